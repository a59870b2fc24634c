"""Decode peer requests and apply them to the host registry."""
from __future__ import annotations

import logging
from typing import NamedTuple

from rendezvous.messages import ClientLookupResponse
from rendezvous.messages import decode_message
from rendezvous.messages import HostLookupRequest
from rendezvous.messages import HostLookupResponse
from rendezvous.messages import HostRegisterRequest
from rendezvous.messages import HostRegisterResponse
from rendezvous.messages import MessageDecodeError
from rendezvous.messages import PingRequest
from rendezvous.messages import PingResponse
from rendezvous.messages import RendezvousMessage
from rendezvous.registry import HostRegistry

logger = logging.getLogger(__name__)


class Outbound(NamedTuple):
    """Message to send to a peer.

    Attributes:
        destination: Transport address of the receiving peer.
        message: Message to send.
    """

    destination: str
    message: RendezvousMessage


class Dispatcher:
    """Route requests from peers to the host registry.

    Every request is fully handled when
    [`handle()`][rendezvous.dispatcher.Dispatcher.handle] returns. Requests
    which cannot be decoded, and messages peers are not expected to send
    (i.e., server responses), are dropped without a reply.

    Args:
        registry: Registry of hosts.
        nul_terminated: Expect payloads to be terminated with a NUL byte.
    """

    def __init__(
        self,
        registry: HostRegistry,
        *,
        nul_terminated: bool = False,
    ) -> None:
        self.registry = registry
        self.nul_terminated = nul_terminated

    def handle(self, data: bytes, origin: str) -> list[Outbound]:
        """Handle a raw message received from `origin`.

        Args:
            data: Raw message bytes.
            origin: Transport address of the sending peer.

        Returns:
            Messages to send in response. Empty if no reply is due.
        """
        try:
            message = decode_message(data, nul_terminated=self.nul_terminated)
        except MessageDecodeError as e:
            logger.debug(f'Dropping malformed message from {origin}: {e}')
            return []

        if isinstance(message, PingRequest):
            return self.ping(origin)
        elif isinstance(message, HostRegisterRequest):
            return self.register(origin)
        elif isinstance(message, HostLookupRequest):
            return self.lookup(origin, message.host_code)
        else:
            logger.debug(
                f'Dropping unexpected {type(message).__name__} from {origin}',
            )
            return []

    def ping(self, origin: str) -> list[Outbound]:
        """Refresh the liveness of the host at `origin`.

        Pings from peers which are not registered hosts get no reply.
        """
        if not self.registry.touch_ping(origin):
            logger.debug(f'Ignoring ping from unregistered peer {origin}')
            return []
        return [Outbound(origin, PingResponse())]

    def register(self, origin: str) -> list[Outbound]:
        """Register `origin` as a host and reply with its code."""
        host_code = self.registry.register(origin)
        return [Outbound(origin, HostRegisterResponse(host_code=host_code))]

    def lookup(self, origin: str, host_code: str) -> list[Outbound]:
        """Resolve `host_code` for the client at `origin`.

        On success, the client gets the host's address and the host gets
        the client's address. Otherwise, only the client gets a failure
        response which is the same for empty and unknown codes.
        """
        failure = Outbound(
            origin,
            HostLookupResponse(success=False, host_info=''),
        )
        if host_code == '':
            return [failure]

        host_address = self.registry.lookup(host_code)
        if host_address is None:
            logger.debug(f'Peer {origin} looked up unknown code {host_code}')
            return [failure]

        logger.info(
            f'Peer {origin} resolved host {host_code} at {host_address}',
        )
        return [
            Outbound(
                origin,
                HostLookupResponse(success=True, host_info=host_address),
            ),
            Outbound(host_address, ClientLookupResponse(client_info=origin)),
        ]
