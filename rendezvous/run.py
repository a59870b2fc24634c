"""CLI and serving functions for running a rendezvous server."""
from __future__ import annotations

import asyncio
import datetime
import functools
import logging
import logging.handlers
import os
import pprint
import signal
import sys

import click

from rendezvous.activity import PeerActivity
from rendezvous.codes import generate_host_code
from rendezvous.config import RendezvousRegistryConfig
from rendezvous.config import RendezvousServingConfig
from rendezvous.registry import HostRegistry
from rendezvous.server import RendezvousServer
from rendezvous.transport.protocols import Transport
from rendezvous.transport.udp import UDPTransport
from rendezvous.transport.websocket import WebSocketTransport
from rendezvous.utils.tasks import start_guarded_task

logger = logging.getLogger(__name__)


def periodic_host_logger(
    registry: HostRegistry,
    interval: float = 60,
    limit: float | None = 32,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Create an asyncio task which logs currently registered hosts.

    Args:
        registry: Registry to log the hosts of.
        interval: Seconds between logging registered hosts.
        limit: Only log the detailed host list if the number of hosts is
            less than this number.
        level: Logging level.

    Returns:
        Asyncio task.
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            hosts = sorted(registry.get_hosts(), key=lambda host: host.id)
            message = f'Registered hosts: {len(hosts)}'
            if limit is not None and 0 < len(hosts) < limit:
                hosts_repr = '\n'.join(repr(host) for host in hosts)
                message = f'{message}\n{hosts_repr}'
            logger.log(level, message)

    return start_guarded_task(_log(), 'rendezvous-server-host-logger')


def create_transport(config: RendezvousServingConfig) -> Transport:
    """Create the transport selected by the configuration."""
    if config.transport == 'websocket':
        return WebSocketTransport(
            config.host,
            config.port,
            max_connections=config.max_connections,
            max_message_bytes=config.max_message_bytes,
            receive_queue_size=config.queue_size,
        )
    return UDPTransport(
        config.host,
        config.port,
        max_message_bytes=config.max_message_bytes,
        receive_queue_size=config.queue_size,
    )


def create_server(
    config: RendezvousServingConfig,
    transport: Transport,
) -> RendezvousServer:
    """Create a server with a new registry from the configuration."""
    registry = HostRegistry(
        config.registry.ping_interval,
        config.registry.removal_timeout,
        generate_id=functools.partial(
            generate_host_code,
            config.registry.code_length,
        ),
    )
    return RendezvousServer(
        transport,
        registry,
        activity=PeerActivity(config.registry.idle_timeout),
        queue_size=config.queue_size,
        tick_interval=config.tick_interval,
        nul_terminated=config.nul_terminated,
    )


async def serve(config: RendezvousServingConfig) -> None:
    """Run the rendezvous server until SIGINT or SIGTERM.

    Note:
        This function will not configure any logging. Configuring logging
        according to
        [`RendezvousServingConfig.logging`][rendezvous.config.RendezvousServingConfig]
        is the responsibility of the caller.

    Args:
        config: Serving configuration.

    Raises:
        OSError: If the transport cannot bind to the configured host
            and port.
    """
    transport = create_transport(config)
    server = create_server(config, transport)

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, server.stop)
    loop.add_signal_handler(signal.SIGTERM, server.stop)

    config_repr = pprint.pformat(config, indent=2)
    logger.info(f'Rendezvous serving configuration:\n{config_repr}')

    host_logger_task: asyncio.Task[None] | None = None
    if config.logging.current_host_interval is not None:  # pragma: no branch
        level = (
            config.logging.default_level
            if isinstance(config.logging.default_level, int)
            else logging.getLevelName(config.logging.default_level)
        )
        host_logger_task = periodic_host_logger(
            server.registry,
            config.logging.current_host_interval,
            config.logging.current_host_limit,
            level=level,
        )

    try:
        await transport.start()
        logger.info(f'Rendezvous server listening on port {config.port}')
        logger.info('Use ctrl-C to stop')
        try:
            async with server:
                await server.run()
        finally:
            await transport.close()
    finally:
        if host_logger_task is not None:  # pragma: no branch
            host_logger_task.cancel()
            try:
                await host_logger_task
            except asyncio.CancelledError:
                pass

        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Rendezvous server shutdown')


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option('--port', type=int, metavar='PORT', help='Port to bind to.')
@click.option(
    '--transport',
    type=click.Choice(['udp', 'websocket'], case_sensitive=False),
    help='Transport peers connect with.',
)
@click.option(
    '--ping-interval',
    type=float,
    metavar='SECONDS',
    help='Seconds between pings sent to hosts.',
)
@click.option(
    '--removal-timeout',
    type=float,
    metavar='SECONDS',
    help='Seconds without a ping before a host is removed.',
)
@click.option('--log-dir', metavar='PATH', help='Logging directory.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
def cli(
    config_path: str | None,
    host: str | None,
    port: int | None,
    transport: str | None,
    ping_interval: float | None,
    removal_timeout: float | None,
    log_dir: str | None,
    log_level: str | None,
) -> None:
    """Run a rendezvous server instance.

    Hosts register with the server to get a short code which clients
    resolve into the host's address. If no configuration file is provided,
    a default configuration will be created from
    [`RendezvousServingConfig()`][rendezvous.config.RendezvousServingConfig].
    The remaining CLI options will override the options provided in the
    configuration object.
    """
    config = (
        RendezvousServingConfig()
        if config_path is None
        else RendezvousServingConfig.from_toml(config_path)
    )

    # Override config with CLI options if given
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if transport is not None:
        config.transport = transport.lower()  # type: ignore[assignment]
    if ping_interval is not None or removal_timeout is not None:
        registry = config.registry.model_dump()
        if ping_interval is not None:
            registry['ping_interval'] = ping_interval
        if removal_timeout is not None:
            registry['removal_timeout'] = removal_timeout
        config.registry = RendezvousRegistryConfig.model_validate(registry)
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = logging.getLevelName(log_level.upper())

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.logging.log_dir is not None:
        os.makedirs(config.logging.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.logging.log_dir, 'server.log'),
                # Rotate logs Sunday at midnight
                when='W6',
                atTime=datetime.time(hour=0, minute=0, second=0),
            ),
        )

    logging.basicConfig(
        format=(
            '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: '
            '%(message)s'
        ),
        datefmt='%Y-%m-%d %H:%M:%S',
        level=config.logging.default_level,
        handlers=handlers,
    )

    logging.getLogger('websockets').setLevel(config.logging.websockets_level)

    try:
        asyncio.run(serve(config))
    except OSError as e:
        logger.critical(
            f'Failed to bind {config.transport} transport to '
            f'{config.host}:{config.port}: {e}',
        )
        sys.exit(1)
