"""Conversion between socket addresses and address strings."""
from __future__ import annotations

from typing import Any


def format_address(address: tuple[Any, ...]) -> str:
    """Format a socket address as `host:port`.

    IPv6 hosts are wrapped in brackets, e.g., `[::1]:4422`.
    """
    host, port = address[0], address[1]
    if ':' in host:
        return f'[{host}]:{port}'
    return f'{host}:{port}'


def parse_address(address: str) -> tuple[str, int]:
    """Parse a `host:port` string into a socket address.

    Raises:
        ValueError: If the string does not contain a host and integer port.
    """
    host, sep, port = address.rpartition(':')
    if sep == '' or host == '':
        raise ValueError(f'Address {address!r} is not of the form host:port.')
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    return host, int(port)
