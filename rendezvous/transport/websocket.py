"""Connection-oriented transport over WebSockets.

Each peer holds one WebSocket connection to the server which acts as a
single reliable and ordered channel. The origin of a message is the
peer's `host:port` which stays the same for the lifetime of the connection.
"""
from __future__ import annotations

import asyncio
import collections
import logging
from typing import NamedTuple

import websockets.exceptions
from websockets.asyncio.server import Server
from websockets.asyncio.server import serve
from websockets.asyncio.server import ServerConnection

from rendezvous.exceptions import TransportError
from rendezvous.exceptions import TransportNotStartedError
from rendezvous.transport.address import format_address
from rendezvous.transport.protocols import Datagram
from rendezvous.transport.protocols import PeerLifecycleListener

logger = logging.getLogger(__name__)

# Close code for connections refused because the server is at capacity
TRY_AGAIN_LATER = 1013


class _PeerEvent(NamedTuple):
    address: str
    connected: bool


class WebSocketTransport:
    """WebSocket server transport.

    Connect and disconnect events are queued as they happen and delivered
    to the listener from within
    [`poll()`][rendezvous.transport.websocket.WebSocketTransport.poll] so
    the listener is only ever invoked from the server loop.

    Args:
        host: Network interface to bind to.
        port: Port to bind to. Use `0` to pick any open port.
        max_connections: Connections opened beyond this limit are closed
            immediately with close code 1013.
        max_message_bytes: Max size of a received message. Peers sending
            larger messages have their connection closed.
        receive_queue_size: Max number of received messages pending a
            poll. Connections stop being read from while the queue is full.
        close_timeout: Seconds to wait for the closing handshake when
            disconnecting a peer.
        listener: Receiver of connect and disconnect events.
    """

    def __init__(
        self,
        host: str = '127.0.0.1',
        port: int = 4422,
        *,
        max_connections: int = 333,
        max_message_bytes: int | None = None,
        receive_queue_size: int = 1000,
        close_timeout: float = 1.0,
        listener: PeerLifecycleListener | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.max_connections = max_connections
        self._max_message_bytes = max_message_bytes
        self._close_timeout = close_timeout
        self._listener = listener
        self._connections: dict[str, ServerConnection] = {}
        self._events: collections.deque[_PeerEvent] = collections.deque()
        self._inbound: asyncio.Queue[Datagram] = asyncio.Queue(
            maxsize=receive_queue_size,
        )
        self._server: Server | None = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(host={self.host}, port={self.port})'

    async def __aenter__(self) -> WebSocketTransport:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def address(self) -> tuple[str, int]:
        """Host and port the server is bound to."""
        if self._server is None:
            raise TransportNotStartedError('Transport has not been started.')
        sockname = self._server.sockets[0].getsockname()
        return sockname[0], sockname[1]

    def connections(self) -> list[str]:
        """Get the addresses of all connected peers."""
        return list(self._connections)

    def set_listener(self, listener: PeerLifecycleListener | None) -> None:
        """Set the receiver of connect and disconnect events."""
        self._listener = listener

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            OSError: If the server cannot bind to the interface and port.
        """
        self._server = await serve(
            self._handler,
            self.host,
            self.port,
            max_size=self._max_message_bytes,
            close_timeout=self._close_timeout,
        )
        logger.info(
            f'WebSocket transport listening on {format_address(self.address)}',
        )

    async def close(self) -> None:
        """Close all connections and stop the server."""
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._connections.clear()

    async def _handler(self, websocket: ServerConnection) -> None:
        address = format_address(websocket.remote_address)

        if len(self._connections) >= self.max_connections:
            logger.warning(
                f'Refusing connection from {address}, reached the max of '
                f'{self.max_connections} connections',
            )
            await websocket.close(TRY_AGAIN_LATER, reason='Server is full.')
            return

        self._connections[address] = websocket
        self._events.append(_PeerEvent(address, connected=True))
        logger.debug(f'Peer connected from {address}')

        try:
            async for message in websocket:
                data = (
                    message.encode('utf-8')
                    if isinstance(message, str)
                    else message
                )
                await self._inbound.put(Datagram(data, address))
        except websockets.exceptions.ConnectionClosedError as e:
            logger.debug(f'Connection to {address} closed with error: {e}')
        finally:
            if self._connections.get(address) is websocket:
                del self._connections[address]
            self._events.append(_PeerEvent(address, connected=False))
            logger.debug(f'Peer disconnected from {address}')

    def poll(self) -> Datagram | None:
        """Deliver pending peer events and get the next message, if any."""
        while len(self._events) > 0:
            event = self._events.popleft()
            if self._listener is None:
                continue
            if event.connected:
                self._listener.peer_connected(event.address)
            else:
                self._listener.peer_disconnected(event.address)

        try:
            return self._inbound.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def send(self, data: bytes, destination: str) -> int:
        """Send a binary message to the peer at `destination`.

        Returns:
            Number of bytes sent. This is `0` if there is no open
            connection to `destination`.

        Raises:
            TransportNotStartedError: If the transport is not started.
            TransportError: If the connection fails while sending.
        """
        if self._server is None:
            raise TransportNotStartedError('Transport has not been started.')

        websocket = self._connections.get(destination, None)
        if websocket is None:
            return 0

        try:
            await websocket.send(data)
        except websockets.exceptions.ConnectionClosed:
            logger.debug(
                f'Connection to {destination} closed while sending message',
            )
            return 0
        except OSError as e:
            raise TransportError(
                f'Failed to send message to {destination}: {e}',
            ) from e
        return len(data)

    async def disconnect(self, address: str) -> None:
        """Close the connection to the peer at `address`, if any."""
        websocket = self._connections.get(address, None)
        if websocket is None:
            return
        logger.info(f'Disconnecting peer at {address}')
        await websocket.close(reason='Disconnected by server.')
