"""Connectionless transport over UDP datagrams."""
from __future__ import annotations

import asyncio
import logging

from rendezvous.exceptions import TransportError
from rendezvous.exceptions import TransportNotStartedError
from rendezvous.transport.address import format_address
from rendezvous.transport.address import parse_address
from rendezvous.transport.protocols import Datagram

logger = logging.getLogger(__name__)


class _DatagramReceiver(asyncio.DatagramProtocol):
    def __init__(
        self,
        queue: asyncio.Queue[Datagram],
        max_message_bytes: int | None,
    ) -> None:
        self._queue = queue
        self._max_message_bytes = max_message_bytes

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        origin = format_address(addr)
        if (
            self._max_message_bytes is not None
            and len(data) > self._max_message_bytes
        ):
            logger.warning(
                f'Dropping datagram from {origin} with size {len(data)} bytes '
                f'which exceeds the max of {self._max_message_bytes} bytes',
            )
            return
        try:
            self._queue.put_nowait(Datagram(data, origin))
        except asyncio.QueueFull:
            logger.warning(
                f'Receive queue is full, dropping datagram from {origin}',
            )

    def error_received(self, exc: Exception) -> None:
        # ICMP errors for earlier sends, e.g., port unreachable
        logger.warning(f'UDP socket error: {exc!r}')


class UDPTransport:
    """UDP transport.

    Every datagram is an independent message and the origin of a message
    is the sender's `host:port` as seen by the server.

    Args:
        host: Network interface to bind to.
        port: Port to bind to. Use `0` to pick any open port.
        max_message_bytes: Datagrams larger than this are dropped.
        receive_queue_size: Max number of received datagrams pending a
            [`poll()`][rendezvous.transport.udp.UDPTransport.poll]. Further
            datagrams are dropped.
    """

    def __init__(
        self,
        host: str = '127.0.0.1',
        port: int = 4422,
        *,
        max_message_bytes: int | None = None,
        receive_queue_size: int = 1000,
    ) -> None:
        self.host = host
        self.port = port
        self._max_message_bytes = max_message_bytes
        self._queue: asyncio.Queue[Datagram] = asyncio.Queue(
            maxsize=receive_queue_size,
        )
        self._transport: asyncio.DatagramTransport | None = None

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(host={self.host}, port={self.port})'

    async def __aenter__(self) -> UDPTransport:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def address(self) -> tuple[str, int]:
        """Host and port the socket is bound to."""
        if self._transport is None:
            raise TransportNotStartedError('Transport has not been started.')
        sockname = self._transport.get_extra_info('sockname')
        return sockname[0], sockname[1]

    async def start(self) -> None:
        """Bind the UDP socket.

        Raises:
            OSError: If the socket cannot be bound.
        """
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DatagramReceiver(self._queue, self._max_message_bytes),
            local_addr=(self.host, self.port),
        )
        self._transport = transport
        logger.info(f'UDP transport bound to {format_address(self.address)}')

    async def close(self) -> None:
        """Close the UDP socket."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def poll(self) -> Datagram | None:
        """Get the next received datagram if one is pending."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def send(self, data: bytes, destination: str) -> int:
        """Send a datagram to `destination`.

        Raises:
            TransportNotStartedError: If the transport is not started.
            TransportError: If the destination is not a valid address or the
                socket rejects the datagram.
        """
        if self._transport is None:
            raise TransportNotStartedError('Transport has not been started.')
        try:
            addr = parse_address(destination)
        except ValueError as e:
            raise TransportError(str(e)) from e
        try:
            self._transport.sendto(data, addr)
        except OSError as e:
            raise TransportError(
                f'Failed to send datagram to {destination}: {e}',
            ) from e
        return len(data)
