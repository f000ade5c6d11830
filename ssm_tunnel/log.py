"""Logging setup: stdlib logging rendered through rich."""

from __future__ import annotations
import logging

from rich.logging import RichHandler


def configure_logging(debug: bool = False, console=None) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    handler = RichHandler(console=console, show_path=debug, rich_tracebacks=debug, markup=False)
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
