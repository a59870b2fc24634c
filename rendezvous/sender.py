"""Ordered background sender for outbound messages."""
from __future__ import annotations

import asyncio
import logging
from typing import NamedTuple
from typing import Union

from rendezvous.exceptions import TransportError
from rendezvous.transport.protocols import ConnectionTransport
from rendezvous.transport.protocols import Transport
from rendezvous.utils.tasks import start_guarded_task

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


class SendRequest(NamedTuple):
    """Payload to send to a peer."""

    destination: str
    payload: bytes


class DisconnectRequest(NamedTuple):
    """Forced disconnect of a peer."""

    address: str


_Request = Union[SendRequest, DisconnectRequest]


class MessageSender:
    """Drain outbound sends and disconnects in the background.

    Requests are executed in the order they are submitted. A full queue
    makes [`send()`][rendezvous.sender.MessageSender.send] and
    [`disconnect()`][rendezvous.sender.MessageSender.disconnect] wait rather
    than drop the request. A failed send is logged and the sender moves on
    to the next request.

    Args:
        transport: Transport to send on.
        maxsize: Max number of requests waiting to be sent.
    """

    def __init__(
        self,
        transport: Transport,
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.transport = transport
        self._queue: asyncio.Queue[_Request] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        """If the background task is running."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background task draining the queue."""
        if self._task is None:
            self._task = start_guarded_task(
                self._drain(),
                'rendezvous-message-sender',
            )

    async def close(self, *, flush: bool = True) -> None:
        """Stop the background task.

        Args:
            flush: Wait for queued requests to be executed first.
        """
        if self._task is None:
            return
        if flush:
            await self.flush()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def flush(self) -> None:
        """Wait until every queued request has been executed."""
        await self._queue.join()

    async def send(self, payload: bytes, destination: str) -> None:
        """Queue `payload` to be sent to `destination`."""
        await self._queue.put(SendRequest(destination, payload))

    async def disconnect(self, address: str) -> None:
        """Queue a forced disconnect of the peer at `address`."""
        await self._queue.put(DisconnectRequest(address))

    async def _execute(self, request: _Request) -> None:
        if isinstance(request, DisconnectRequest):
            if isinstance(self.transport, ConnectionTransport):
                await self.transport.disconnect(request.address)
            return

        try:
            sent = await self.transport.send(
                request.payload,
                request.destination,
            )
        except TransportError as e:
            logger.error(f'Failed to send to {request.destination}: {e}')
        else:
            if sent == 0:
                logger.debug(
                    f'No connection to {request.destination}, message dropped',
                )

    async def _drain(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                await self._execute(request)
            finally:
                self._queue.task_done()
