"""Exception types raised by the rendezvous server."""
from __future__ import annotations


class RendezvousError(Exception):
    """Base exception type for the rendezvous server."""

    pass


class ConfigurationError(RendezvousError):
    """Server options are inconsistent with each other."""

    pass


class TransportError(RendezvousError):
    """A single send or receive failed at the transport layer."""

    pass


class TransportNotStartedError(TransportError):
    """Transport was used before it was started or after it was closed."""

    pass
