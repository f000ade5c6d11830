"""Shared fixtures: isolated state directory and real background processes."""

from __future__ import annotations

import os
import signal
import socket
import subprocess
from pathlib import Path
from typing import Callable, Iterator

import pytest

from ssm_tunnel import constants
from ssm_tunnel.registry import SessionRegistry


def reap(pid: int) -> None:
    try:
        os.waitpid(pid, 0)
    except ChildProcessError:
        pass


def stop_group(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    reap(pid)


def dead_pid() -> int:
    proc = subprocess.Popen(["true"])
    proc.wait()
    return proc.pid


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def state_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "state"
    monkeypatch.setenv(constants.ENV_STATE_DIR, str(path))
    monkeypatch.delenv(constants.ENV_AWS_CLI, raising=False)
    return path


@pytest.fixture
def registry(state_dir: Path) -> SessionRegistry:
    return SessionRegistry(state_dir / "pids.json")


@pytest.fixture
def sleeper() -> Iterator[Callable[[], int]]:
    """Start `sleep` in its own process group; every group is killed at teardown."""
    pids: list[int] = []

    def _spawn() -> int:
        proc = subprocess.Popen(
            ["sleep", "60"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        pids.append(proc.pid)
        return proc.pid

    yield _spawn
    for pid in pids:
        stop_group(pid)


@pytest.fixture
def sleep_forwarder(monkeypatch: pytest.MonkeyPatch) -> Iterator[list[int]]:
    """Make the launcher run `sleep` instead of the AWS CLI; returns launched pids."""
    launched: list[int] = []
    monkeypatch.setattr("ssm_tunnel.launcher.build_forward_command", lambda target: ["sleep", "60"])
    yield launched
    for pid in launched:
        stop_group(pid)
