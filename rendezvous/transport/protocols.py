"""Transport interfaces used by the rendezvous server."""
from __future__ import annotations

from typing import NamedTuple
from typing import Protocol
from typing import runtime_checkable


class Datagram(NamedTuple):
    """Message received by a transport.

    Attributes:
        data: Raw message bytes.
        origin: Transport address of the sending peer.
    """

    data: bytes
    origin: str


@runtime_checkable
class PeerLifecycleListener(Protocol):
    """Receiver of connect and disconnect events from a transport."""

    def peer_connected(self, address: str) -> None:
        """Called when a peer opens a connection."""
        ...

    def peer_disconnected(self, address: str) -> None:
        """Called when a peer's connection closes."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Non-blocking message transport.

    Implementations must never block in
    [`poll()`][rendezvous.transport.protocols.Transport.poll] so the server
    loop keeps running its liveness sweep when no peer is talking.
    """

    async def start(self) -> None:
        """Bind the transport.

        Raises:
            OSError: If the listening endpoint cannot be bound.
        """
        ...

    async def close(self) -> None:
        """Stop the transport and release the endpoint."""
        ...

    def poll(self) -> Datagram | None:
        """Get the next received message if one is pending."""
        ...

    async def send(self, data: bytes, destination: str) -> int:
        """Send a message to a peer.

        Returns:
            Number of bytes sent.

        Raises:
            TransportError: If the send failed.
        """
        ...


@runtime_checkable
class ConnectionTransport(Transport, Protocol):
    """Transport with a connection per peer.

    Origins are stable for the lifetime of a connection. Sending to an
    address without a live connection sends nothing and returns `0`.
    """

    def set_listener(self, listener: PeerLifecycleListener | None) -> None:
        """Set the receiver of connect and disconnect events.

        Events are delivered from within
        [`poll()`][rendezvous.transport.protocols.Transport.poll].
        """
        ...

    async def disconnect(self, address: str) -> None:
        """Close the connection to the peer at `address`, if any."""
        ...
