"""Local port availability check."""

from __future__ import annotations
import socket
from typing import Union

LOOPBACK = "127.0.0.1"


def parse_port(port: Union[int, str]) -> int:
    try:
        value = int(str(port).strip())
    except ValueError:
        raise ValueError(f"invalid port: {port!r}") from None
    if not 1 <= value <= 65535:
        raise ValueError(f"port out of range (1-65535): {value}")
    return value


def is_port_in_use(port: Union[int, str]) -> bool:
    """Return True if a TCP listener cannot be bound on loopback at ``port``.

    Best effort only: the port may be taken by someone else between this
    check and the tunnel actually binding it.
    """
    value = parse_port(port)
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((LOOPBACK, value))
        sock.listen(1)
    except OSError:
        return True
    finally:
        sock.close()
    return False
