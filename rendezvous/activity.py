"""Idle tracking for raw connections which have not registered as hosts."""
from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class PeerActivity:
    """Last-seen times of connected peers which are not hosts.

    Only meaningful for connection-oriented transports. Peers which connect
    and then never register (e.g., clients that already resolved the code
    they wanted) would otherwise hold a connection slot forever. Once a
    peer registers as a host it is removed from the tracker and its liveness
    is governed by the [`HostRegistry`][rendezvous.registry.HostRegistry].

    The tracker implements the
    [`PeerLifecycleListener`][rendezvous.transport.protocols.PeerLifecycleListener]
    protocol so a transport can report connects and disconnects to it
    directly.

    Args:
        idle_timeout: Seconds of inactivity after which a peer is pruned.
        clock: Callable returning the current time in seconds.
    """

    def __init__(
        self,
        idle_timeout: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if idle_timeout <= 0:
            raise ValueError(
                f'Idle timeout must be positive, got {idle_timeout}.',
            )
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._last_seen: dict[str, float] = {}

    def __contains__(self, address: object) -> bool:
        return address in self._last_seen

    def __len__(self) -> int:
        return len(self._last_seen)

    def touch(self, address: str) -> None:
        """Record activity from `address`."""
        self._last_seen[address] = self._clock()

    def discard(self, address: str) -> None:
        """Stop tracking `address`. No-op if it is not tracked."""
        self._last_seen.pop(address, None)

    def prune(self, now: float | None = None) -> list[str]:
        """Remove and return peers idle for at least the idle timeout."""
        now = self._clock() if now is None else now
        idle = [
            address
            for address, last_seen in self._last_seen.items()
            if now - last_seen >= self.idle_timeout
        ]
        for address in idle:
            del self._last_seen[address]
        if len(idle) > 0:
            logger.info(f'Pruning {len(idle)} idle peer connection(s)')
        return idle

    def peer_connected(self, address: str) -> None:
        """Start tracking a newly connected peer."""
        self.touch(address)

    def peer_disconnected(self, address: str) -> None:
        """Stop tracking a peer whose connection closed."""
        self.discard(address)
