"""Rendezvous server configuration file parsing."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Literal

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator

from rendezvous.codes import HOST_CODE_LENGTH
from rendezvous.registry import DEFAULT_PING_INTERVAL
from rendezvous.registry import DEFAULT_REMOVAL_TIMEOUT
from rendezvous.sender import DEFAULT_QUEUE_SIZE
from rendezvous.utils.config import load


class RendezvousRegistryConfig(BaseModel):
    """Host registry configuration.

    Attributes:
        ping_interval: Seconds between pings the server sends to each host.
        removal_timeout: Seconds without a ping from a host before the host
            is evicted. Must be greater than `ping_interval`, ideally by
            enough to tolerate a few lost round trips.
        peer_idle_timeout: Seconds before an idle connection which never
            registered as a host is closed. Only used by the `websocket`
            transport. Defaults to `removal_timeout`.
        code_length: Number of symbols in a rendezvous code.
    """

    model_config = ConfigDict(extra='forbid')

    ping_interval: float = Field(DEFAULT_PING_INTERVAL, gt=0)
    removal_timeout: float = Field(DEFAULT_REMOVAL_TIMEOUT, gt=0)
    peer_idle_timeout: float | None = Field(None, gt=0)
    code_length: int = Field(HOST_CODE_LENGTH, ge=1)

    @model_validator(mode='after')
    def check_timeouts(self) -> Self:
        if self.removal_timeout <= self.ping_interval:
            raise ValueError(
                f'removal_timeout ({self.removal_timeout}) must be greater '
                f'than ping_interval ({self.ping_interval}).',
            )
        return self

    @property
    def idle_timeout(self) -> float:
        """Idle timeout for connections which are not hosts."""
        return (
            self.removal_timeout
            if self.peer_idle_timeout is None
            else self.peer_idle_timeout
        )


class RendezvousLoggingConfig(BaseModel):
    """Rendezvous server logging configuration.

    Attributes:
        log_dir: Default logging directory.
        default_level: Default logging level for the root logger.
        websockets_level: Log level for the `websockets` logger.
        current_host_interval: Optional seconds between logging the
            number of currently registered hosts.
        current_host_limit: Max threshold for enumerating the detailed list
            of registered hosts. If `None`, no detailed list will be logged.
    """

    model_config = ConfigDict(extra='forbid')

    log_dir: str | None = None
    default_level: int | str = logging.INFO
    websockets_level: int | str = logging.WARNING
    current_host_interval: int | None = 60
    current_host_limit: int | None = 32


class RendezvousServingConfig(BaseModel):
    """Rendezvous server serving configuration.

    Attributes:
        host: Network interface the server binds to.
        port: Network port the server binds to.
        transport: `udp` for plain datagrams or `websocket` for one
            reliable, ordered connection per peer.
        max_connections: Max concurrent peer connections. Only used by the
            `websocket` transport.
        max_message_bytes: Max size of a received message in bytes.
        queue_size: Max number of outbound messages waiting to be sent.
        tick_interval: Seconds the server loop sleeps after a tick in which
            no message was received.
        nul_terminated: Terminate outbound payloads with a NUL byte and
            strip a trailing NUL byte from inbound payloads.
        registry: Host registry configuration.
        logging: Logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    host: str = '127.0.0.1'
    port: int = 4422
    transport: Literal['udp', 'websocket'] = 'udp'
    max_connections: int = Field(333, ge=1)
    max_message_bytes: int | None = Field(1024, ge=1)
    queue_size: int = Field(DEFAULT_QUEUE_SIZE, ge=1)
    tick_interval: float = Field(0.001, ge=0)
    nul_terminated: bool = False
    registry: RendezvousRegistryConfig = Field(
        default_factory=RendezvousRegistryConfig,
    )
    logging: RendezvousLoggingConfig = Field(
        default_factory=RendezvousLoggingConfig,
    )

    @classmethod
    def from_toml(cls, filepath: str | pathlib.Path) -> Self:
        """Parse a TOML config file.

        Example:
            ```toml title="rendezvous.toml"
            host = "0.0.0.0"
            port = 4422
            transport = "websocket"
            max_connections = 333

            [registry]
            ping_interval = 10
            removal_timeout = 40

            [logging]
            log_dir = "/path/to/log/dir"
            default_level = "INFO"
            current_host_interval = 60
            ```

            ```python
            from rendezvous.config import RendezvousServingConfig

            config = RendezvousServingConfig.from_toml('rendezvous.toml')
            ```

        Note:
            Omitted values will be set to their defaults.
        """
        with open(filepath, 'rb') as f:
            return load(cls, f)
