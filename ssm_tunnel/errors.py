"""Exception types raised by the tunnel library.

Everything derives from ``TunnelError`` so the CLI can report any of them
with one handler and exit non-zero.
"""

from __future__ import annotations
from typing import Optional


class TunnelError(Exception):
    pass


class PortInUseError(TunnelError):
    def __init__(self, port: int):
        super().__init__(f"Local port {port} is already in use")
        self.port = port


class LaunchError(TunnelError):
    def __init__(self, message: str, pid: Optional[int] = None):
        super().__init__(message)
        self.pid = pid


class RegistryError(TunnelError):
    pass


class KillError(TunnelError):
    def __init__(self, pid: int, cause: OSError):
        super().__init__(f"failed to kill pid {pid}: {cause}")
        self.pid = pid
        self.cause = cause


class SelectionError(TunnelError):
    pass


class DiscoveryError(TunnelError):
    pass
