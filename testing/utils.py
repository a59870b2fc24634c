"""Fixtures and utilities for testing."""
from __future__ import annotations

import socket


def open_port(kind: socket.SocketKind = socket.SOCK_STREAM) -> int:
    """Return an open port for sockets of type `kind`.

    Source: https://stackoverflow.com/questions/2838244
    """
    s = socket.socket(socket.AF_INET, kind)
    s.bind(('', 0))
    port = s.getsockname()[1]
    s.close()
    return port
