"""Terminate background sessions and reconcile the registry."""

from __future__ import annotations
import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ssm_tunnel.errors import KillError, RegistryError
from ssm_tunnel.process import kill_group
from ssm_tunnel.registry import SessionRecord, SessionRegistry

logger = logging.getLogger(__name__)


class KillOutcome(enum.Enum):
    KILLED = "killed"
    ALREADY_DEAD = "already-dead"


@dataclass
class KillAllReport:
    found: bool = True
    outcomes: List[Tuple[SessionRecord, KillOutcome]] = field(default_factory=list)
    failures: List[Tuple[SessionRecord, KillError]] = field(default_factory=list)
    # set when the registry could not be parsed; its sessions were not signalled
    unreadable: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return len(self.outcomes)

    @property
    def killed(self) -> int:
        return sum(1 for _, outcome in self.outcomes if outcome is KillOutcome.KILLED)


def _signal(pid: int) -> KillOutcome:
    try:
        delivered = kill_group(pid)
    except OSError as e:
        raise KillError(pid, e) from e
    return KillOutcome.KILLED if delivered else KillOutcome.ALREADY_DEAD


def kill_session(pid: int, registry: Optional[SessionRegistry] = None) -> KillOutcome:
    """SIGKILL the process group of ``pid`` and drop its registry record.

    A group that no longer exists counts as cleaned up. Any other signalling
    failure raises ``KillError`` and the registry is left alone.
    """
    registry = registry or SessionRegistry()
    outcome = _signal(pid)
    registry.remove(pid)
    return outcome


def kill_all(registry: Optional[SessionRegistry] = None) -> KillAllReport:
    registry = registry or SessionRegistry()
    if not registry.exists():
        return KillAllReport(found=False)

    report = KillAllReport()
    try:
        records = registry.load()
    except RegistryError as e:
        logger.warning("ignoring unreadable session registry: %s", e)
        report.unreadable = str(e)
        records = []
    for record in records:
        try:
            report.outcomes.append((record, _signal(record.pid)))
        except KillError as e:
            logger.debug("kill failed for pid %d: %s", record.pid, e.cause)
            report.failures.append((record, e))
    registry.clear()
    return report
