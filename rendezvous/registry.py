"""Registry of hosts discoverable by rendezvous code."""
from __future__ import annotations

import dataclasses
import datetime
import logging
import time
from typing import Callable
from typing import NamedTuple

from rendezvous.codes import generate_host_code
from rendezvous.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 10.0
DEFAULT_REMOVAL_TIMEOUT = 40.0


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(eq=False)
class Host:
    """Registered host.

    Attributes:
        id: Rendezvous code of the host.
        address: Transport address the host registered from.
        last_ping_sent_at: Clock time the server last pinged the host.
        last_ping_received_at: Clock time the host was last heard from.
        pending_removal: Set by the liveness sweep once the host has
            timed out.
        created: Wall time the host registered at.
    """

    id: str
    address: str
    last_ping_sent_at: float
    last_ping_received_at: float
    pending_removal: bool = False
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        return (
            f'{self.__class__.__name__}(id={self.id}, '
            f'address={self.address}, created={created})'
        )


class SweepResult(NamedTuple):
    """Actions produced by a liveness sweep.

    Attributes:
        ping: Hosts which are due to be pinged.
        evicted: Hosts which timed out and were removed from the registry.
    """

    ping: list[Host]
    evicted: list[Host]


class HostRegistry:
    """Hosts indexed by rendezvous code and by address.

    The registry is the only owner of host state and is not thread-safe.
    It is meant to be mutated from a single loop, e.g., the
    [`RendezvousServer`][rendezvous.server.RendezvousServer] tick.

    Args:
        ping_interval: Seconds between pings sent to each host.
        removal_timeout: Seconds without hearing from a host after which
            the host is evicted. Must be greater than `ping_interval`.
        generate_id: Callable returning a new candidate rendezvous code.
        clock: Callable returning the current time in seconds.

    Raises:
        ConfigurationError: If `removal_timeout` is not greater than
            `ping_interval` or either is not positive.
    """

    def __init__(
        self,
        ping_interval: float = DEFAULT_PING_INTERVAL,
        removal_timeout: float = DEFAULT_REMOVAL_TIMEOUT,
        *,
        generate_id: Callable[[], str] = generate_host_code,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ping_interval <= 0 or removal_timeout <= 0:
            raise ConfigurationError(
                'Ping interval and removal timeout must be positive.',
            )
        if removal_timeout <= ping_interval:
            raise ConfigurationError(
                f'Removal timeout ({removal_timeout}s) must be greater than '
                f'the ping interval ({ping_interval}s).',
            )
        self.ping_interval = ping_interval
        self.removal_timeout = removal_timeout
        self._generate_id = generate_id
        self._clock = clock
        self._hosts_by_id: dict[str, Host] = {}
        self._ids_by_address: dict[str, str] = {}

    def __contains__(self, host_id: object) -> bool:
        return host_id in self._hosts_by_id

    def __len__(self) -> int:
        return len(self._hosts_by_id)

    def get_hosts(self) -> list[Host]:
        """Get a list of all hosts."""
        return list(self._hosts_by_id.values())

    def get_host(self, host_id: str) -> Host | None:
        """Get a host by its rendezvous code."""
        return self._hosts_by_id.get(host_id, None)

    def get_host_by_address(self, address: str) -> Host | None:
        """Get a host by the address it registered from."""
        host_id = self._ids_by_address.get(address, None)
        return None if host_id is None else self._hosts_by_id[host_id]

    def register(self, address: str) -> str:
        """Register the peer at `address` as a host.

        Registering an address which already owns a host refreshes the
        host's liveness and returns the existing code.

        Args:
            address: Transport address of the peer.

        Returns:
            Rendezvous code of the host.
        """
        now = self._clock()
        existing = self.get_host_by_address(address)
        if existing is not None:
            existing.last_ping_received_at = now
            logger.debug(
                f'Host {existing.id} at {address} re-registered, '
                'keeping existing code',
            )
            return existing.id

        host_id = self._generate_id()
        while host_id in self._hosts_by_id:
            host_id = self._generate_id()

        host = Host(
            id=host_id,
            address=address,
            last_ping_sent_at=now,
            last_ping_received_at=now,
        )
        self._hosts_by_id[host_id] = host
        self._ids_by_address[address] = host_id
        logger.info(f'Registered host: {host}')
        return host_id

    def lookup(self, host_id: str) -> str | None:
        """Get the address of the host owning `host_id`, if any."""
        host = self._hosts_by_id.get(host_id, None)
        return None if host is None else host.address

    def touch_ping(self, address: str) -> bool:
        """Record a ping received from `address`.

        Pings from addresses without a registered host are ignored.

        Returns:
            If `address` owns a host.
        """
        host = self.get_host_by_address(address)
        if host is None:
            return False
        host.last_ping_received_at = self._clock()
        return True

    def sweep(self, now: float | None = None) -> SweepResult:
        """Find hosts to ping and evict hosts that timed out.

        The liveness decision is made for every host before any host is
        removed so the caller can apply side effects (pings, forced
        disconnects) after the registry is consistent again.

        Args:
            now: Current clock time. Defaults to the registry's clock.

        Returns:
            Hosts to ping and hosts which were evicted.
        """
        now = self._clock() if now is None else now

        ping: list[Host] = []
        for host in self._hosts_by_id.values():
            if now - host.last_ping_sent_at > self.ping_interval:
                host.last_ping_sent_at = now
                ping.append(host)
            if now - host.last_ping_received_at >= self.removal_timeout:
                host.pending_removal = True

        evicted = [
            host for host in self._hosts_by_id.values() if host.pending_removal
        ]
        for host in evicted:
            del self._hosts_by_id[host.id]
            del self._ids_by_address[host.address]
            logger.info(
                f'Removed host {host.id} at {host.address}, '
                f'no ping received in {now - host.last_ping_received_at:.1f}s',
            )

        return SweepResult(ping=ping, evicted=evicted)
