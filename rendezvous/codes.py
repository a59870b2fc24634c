"""Generation of rendezvous codes."""
from __future__ import annotations

import secrets

HOST_CODE_ALPHABET = '0123456789ABCDEF'
HOST_CODE_LENGTH = 8


def generate_host_code(
    length: int = HOST_CODE_LENGTH,
    alphabet: str = HOST_CODE_ALPHABET,
) -> str:
    """Generate a random rendezvous code.

    Codes are not checked for uniqueness here. The
    [`HostRegistry`][rendezvous.registry.HostRegistry] retries generation
    until the code does not collide with a live host.

    Args:
        length: Number of symbols in the code.
        alphabet: Symbols to draw from.

    Returns:
        Random code string.
    """
    if length < 1:
        raise ValueError(f'Code length must be positive, got {length}.')
    return ''.join(secrets.choice(alphabet) for _ in range(length))
