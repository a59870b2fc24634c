"""Rendezvous server loop.

The server introduces two peers to each other. A host registers and gets a
short code which it shares with a client out-of-band. The client looks up
the code and learns the host's address while the host learns the client's
address, after which the peers connect directly and the server is no
longer involved.

Each tick of the loop runs the liveness sweep, closes idle connections,
polls the transport for at most one message, and dispatches that message.
The loop is the only writer of the host registry. Replies, pings and forced
disconnects are handed to a
[`MessageSender`][rendezvous.sender.MessageSender] so a slow transport
never stalls the loop.
"""
from __future__ import annotations

import asyncio
import logging

from rendezvous.activity import PeerActivity
from rendezvous.dispatcher import Dispatcher
from rendezvous.dispatcher import Outbound
from rendezvous.messages import encode_message
from rendezvous.messages import MessageEncodeError
from rendezvous.messages import PingResponse
from rendezvous.registry import HostRegistry
from rendezvous.sender import DEFAULT_QUEUE_SIZE
from rendezvous.sender import MessageSender
from rendezvous.transport.protocols import ConnectionTransport
from rendezvous.transport.protocols import Transport

logger = logging.getLogger(__name__)


class RendezvousServer:
    """Rendezvous server.

    Args:
        transport: Transport to receive requests on and send replies with.
            The caller is responsible for starting and closing it.
        registry: Registry of hosts.
        activity: Idle tracker for connections which are not hosts. Only
            used if `transport` is a
            [`ConnectionTransport`][rendezvous.transport.protocols.ConnectionTransport],
            in which case it is also set as the transport's listener.
        queue_size: Max number of outbound messages waiting to be sent.
        tick_interval: Seconds to sleep after a tick which received nothing.
        nul_terminated: Use NUL-terminated payloads.
    """

    def __init__(
        self,
        transport: Transport,
        registry: HostRegistry,
        *,
        activity: PeerActivity | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        tick_interval: float = 0.001,
        nul_terminated: bool = False,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.dispatcher = Dispatcher(registry, nul_terminated=nul_terminated)
        self.sender = MessageSender(transport, maxsize=queue_size)
        self.tick_interval = tick_interval
        self.nul_terminated = nul_terminated

        self.activity: PeerActivity | None = None
        if isinstance(transport, ConnectionTransport):
            self.activity = (
                PeerActivity(registry.removal_timeout)
                if activity is None
                else activity
            )
            transport.set_listener(self.activity)

        self._stop = asyncio.Event()

    async def __aenter__(self) -> RendezvousServer:
        self.sender.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.sender.close()

    async def send(self, outbound: Outbound) -> None:
        """Encode and queue a message.

        Messages which cannot be encoded are logged and skipped.
        """
        try:
            payload = encode_message(
                outbound.message,
                nul_terminated=self.nul_terminated,
            )
        except MessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return
        await self.sender.send(payload, outbound.destination)

    async def sweep(self) -> None:
        """Ping hosts that are due and disconnect timed out peers."""
        result = self.registry.sweep()

        for host in result.ping:
            await self.send(Outbound(host.address, PingResponse()))

        if self.activity is None:
            return

        for host in result.evicted:
            self.activity.discard(host.address)
            await self.sender.disconnect(host.address)

        for address in self.activity.prune():
            await self.sender.disconnect(address)

    async def tick(self) -> bool:
        """Run one iteration of the server loop.

        Returns:
            If a message was received.
        """
        await self.sweep()

        datagram = self.transport.poll()
        if datagram is None:
            return False

        try:
            replies = self.dispatcher.handle(datagram.data, datagram.origin)
        except Exception:
            logger.exception(
                f'Unexpected error handling message from {datagram.origin}',
            )
            replies = []

        for outbound in replies:
            await self.send(outbound)

        if self.activity is not None:
            if self.registry.get_host_by_address(datagram.origin) is None:
                self.activity.touch(datagram.origin)
            else:
                self.activity.discard(datagram.origin)

        return True

    async def run(self) -> None:
        """Run the server loop until stopped."""
        self._stop.clear()
        self.sender.start()
        logger.info(f'Rendezvous server running on {self.transport!r}')
        while not self._stop.is_set():
            received = await self.tick()
            if not received:
                await asyncio.sleep(self.tick_interval)
            else:
                # Yield so transport and sender tasks can make progress
                await asyncio.sleep(0)
        logger.info('Rendezvous server loop stopped')

    def stop(self) -> None:
        """Stop the server loop after the current tick."""
        self._stop.set()
