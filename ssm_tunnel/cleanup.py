"""Foreground tunnel handle and the Ctrl+C / SIGTERM cleanup path."""

from __future__ import annotations
import logging
import signal
import sys
from typing import Callable, Dict, Optional

from ssm_tunnel.process import kill_group

logger = logging.getLogger(__name__)


class ForegroundHandle:
    """Tracks the process group of the tunnel currently running in the foreground."""

    def __init__(self, killer: Callable[[int], bool] = kill_group):
        self._killer = killer
        self.pid: Optional[int] = None

    def track(self, pid: int) -> None:
        self.pid = pid

    def release(self) -> None:
        self.pid = None

    def terminate(self) -> bool:
        """Kill the tracked group. Returns True if something was signalled."""
        if self.pid is None:
            return False
        pid, self.pid = self.pid, None
        try:
            return self._killer(pid)
        except OSError as e:
            logger.warning("could not kill process group %d: %s", pid, e)
            return False


def install_signal_handlers(
    handle: ForegroundHandle,
    on_close: Optional[Callable[[], None]] = None,
    exit_fn: Callable[[int], None] = sys.exit,
) -> Dict[int, object]:
    """Kill ``handle``'s group and exit on SIGINT/SIGTERM.

    Returns the previous handlers keyed by signal number.
    """

    def _handler(signum, frame):
        if handle.pid is not None and on_close is not None:
            on_close()
        handle.terminate()
        exit_fn(0)

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    return previous


def restore_signal_handlers(previous: Dict[int, object]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)
