"""OS process helpers: liveness probe and process-group signalling."""

from __future__ import annotations
import logging
import os
import signal

logger = logging.getLogger(__name__)


def process_alive(pid: int) -> bool:
    """Probe ``pid`` with signal 0.

    Any delivery error counts as dead, including EPERM for a process that
    exists but belongs to someone else.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def kill_group(pid: int, sig: int = signal.SIGKILL) -> bool:
    """Send ``sig`` to the whole process group led by ``pid``.

    Returns False when the group no longer exists. Other OS errors propagate.
    """
    if pid <= 0:
        raise ValueError(f"refusing to signal process group {pid}")
    try:
        os.killpg(pid, sig)
    except ProcessLookupError:
        logger.debug("process group %d already gone", pid)
        return False
    logger.debug("sent signal %d to process group %d", sig, pid)
    return True
