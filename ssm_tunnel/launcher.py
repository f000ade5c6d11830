"""Start SSM port-forward sessions through the AWS CLI."""

from __future__ import annotations
import logging
import signal
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ssm_tunnel import constants
from ssm_tunnel.cleanup import ForegroundHandle
from ssm_tunnel.errors import LaunchError, PortInUseError, RegistryError
from ssm_tunnel.ports import is_port_in_use, parse_port
from ssm_tunnel.process import kill_group
from ssm_tunnel.registry import SessionRecord, SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForwardTarget:
    profile: str
    instance_id: str
    instance_label: str
    remote_host: str
    remote_port: int
    local_port: int

    @property
    def descriptor(self) -> str:
        return f"{self.remote_host}:{self.remote_port}"


def build_forward_command(target: ForwardTarget) -> List[str]:
    parameters = (
        f'host=["{target.remote_host}"],'
        f'portNumber=["{target.remote_port}"],'
        f'localPortNumber=["{target.local_port}"]'
    )
    return [
        constants.aws_cli(), "ssm", "start-session",
        "--profile", target.profile,
        "--target", target.instance_id,
        "--document-name", constants.PORT_FORWARD_DOCUMENT,
        "--parameters", parameters,
    ]


def build_shell_command(profile: str, instance_id: str) -> List[str]:
    return [
        constants.aws_cli(), "ssm", "start-session",
        "--profile", profile,
        "--target", instance_id,
        "--document-name", constants.SHELL_DOCUMENT,
        "--parameters", "command=bash",
    ]


def _check_local_port(target: ForwardTarget) -> None:
    port = parse_port(target.local_port)
    if is_port_in_use(port):
        raise PortInUseError(port)


def _discard(proc: subprocess.Popen) -> None:
    try:
        kill_group(proc.pid)
    except OSError as e:
        logger.warning("could not stop unrecorded pid %d: %s", proc.pid, e)
        return
    proc.wait()


def start_port_forward(target: ForwardTarget, registry: Optional[SessionRegistry] = None) -> int:
    """Launch a detached port-forward and record it. Returns the new PID.

    The child gets its own session (and so its own process group) with all
    standard streams on /dev/null. Only the process start is confirmed; the
    tunnel itself is not probed. If the record cannot be written the child is
    killed again, so no tunnel runs without an entry in the registry.
    """
    _check_local_port(target)
    registry = registry or SessionRegistry()
    cmd = build_forward_command(target)
    logger.debug("launching: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise LaunchError(f"failed to start port forward: {e}") from e

    try:
        registry.append(SessionRecord(
            pid=proc.pid,
            profile=target.profile,
            instance_label=target.instance_label,
            target_descriptor=target.descriptor,
        ))
    except RegistryError as e:
        _discard(proc)
        raise LaunchError(f"port forward PID {proc.pid} stopped, it could not be recorded: {e}", pid=proc.pid) from e
    return proc.pid


def run_foreground(cmd: List[str], handle: ForegroundHandle) -> int:
    """Run ``cmd`` attached to the terminal and wait for it.

    The child still gets its own process group so ``handle`` can kill its
    whole tree when the user interrupts us.
    """
    logger.debug("running: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(cmd, start_new_session=True)
    except OSError as e:
        raise LaunchError(f"failed to start {cmd[0]}: {e}") from e
    handle.track(proc.pid)
    try:
        return proc.wait()
    finally:
        handle.release()


def run_attached(cmd: List[str]) -> int:
    """Run an interactive ``cmd`` in our own process group and wait for it.

    Ctrl+C from the terminal reaches the child directly, so SIGINT is ignored
    here until the child exits.
    """
    logger.debug("running: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(cmd)
    except OSError as e:
        raise LaunchError(f"failed to start {cmd[0]}: {e}") from e
    # set only after Popen returns: the child has exec'd with default handlers
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        return proc.wait()
    finally:
        signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)


def run_port_forward_foreground(target: ForwardTarget, handle: ForegroundHandle) -> int:
    _check_local_port(target)
    return run_foreground(build_forward_command(target), handle)
