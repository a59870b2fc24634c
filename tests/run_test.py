from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import signal
import socket
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest

from rendezvous.config import RendezvousRegistryConfig
from rendezvous.config import RendezvousServingConfig
from rendezvous.messages import HostRegisterRequest
from rendezvous.messages import HostRegisterResponse
from rendezvous.registry import HostRegistry
from rendezvous.run import cli
from rendezvous.run import create_server
from rendezvous.run import create_transport
from rendezvous.run import periodic_host_logger
from rendezvous.run import serve
from rendezvous.transport.udp import UDPTransport
from rendezvous.transport.websocket import WebSocketTransport
from testing.rendezvous_server import UDPPeer
from testing.utils import open_port


@pytest.mark.asyncio()
async def test_periodic_host_logger(caplog) -> None:
    caplog.set_level(logging.INFO)

    registry = HostRegistry(10, 40)
    code = registry.register('10.0.0.1:5000')

    task = periodic_host_logger(registry, 0.001)
    await asyncio.sleep(0.01)
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass

    assert any(
        [
            'Registered hosts: 1' in record.message
            and record.levelname == 'INFO'
            for record in caplog.records
        ],
    )
    assert any([code in record.message for record in caplog.records])


def test_create_transport() -> None:
    config = RendezvousServingConfig(transport='udp')
    assert isinstance(create_transport(config), UDPTransport)

    config = RendezvousServingConfig(transport='websocket', max_connections=3)
    transport = create_transport(config)
    assert isinstance(transport, WebSocketTransport)
    assert transport.max_connections == 3


def test_create_server() -> None:
    config = RendezvousServingConfig(
        transport='websocket',
        registry=RendezvousRegistryConfig(
            ping_interval=1,
            removal_timeout=5,
            peer_idle_timeout=2,
            code_length=4,
        ),
    )
    server = create_server(config, create_transport(config))

    assert server.registry.ping_interval == 1
    assert server.registry.removal_timeout == 5
    assert server.activity is not None
    assert server.activity.idle_timeout == 2
    assert len(server.registry.register('10.0.0.1:5000')) == 4


def test_invoke() -> None:
    runner = click.testing.CliRunner()
    with mock.patch('rendezvous.run.serve', AsyncMock()) as mock_serve:
        result = runner.invoke(cli)
        assert result.exit_code == 0
        mock_serve.assert_awaited_once()


def test_invoke_and_override_defaults(tmp_path: pathlib.Path) -> None:
    tmp_dir = os.path.join(tmp_path, 'log-dir')
    assert not os.path.isdir(tmp_dir)

    async def _mock_serve(config: RendezvousServingConfig) -> None:
        assert config.host == 'test-host'
        assert config.port == 1234
        assert config.transport == 'websocket'
        assert config.registry.ping_interval == 60
        assert config.registry.removal_timeout == 120
        assert config.logging.log_dir == str(tmp_dir)
        assert config.logging.default_level == logging.WARNING

    options: list[str] = []
    options += ['--host', 'test-host']
    options += ['--port', '1234']
    options += ['--transport', 'WebSocket']
    options += ['--ping-interval', '60']
    options += ['--removal-timeout', '120']
    options += ['--log-dir', str(tmp_dir)]
    options += ['--log-level', 'WARNING']

    runner = click.testing.CliRunner()
    with mock.patch(
        'rendezvous.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ):
        result = runner.invoke(cli, options)
        assert result.exit_code == 0, result.output

    assert os.path.isdir(tmp_dir)


def test_invoke_with_config_file(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'rendezvous.toml'
    filepath.write_text('port = 4000\n[registry]\nremoval_timeout = 90\n')

    async def _mock_serve(config: RendezvousServingConfig) -> None:
        assert config.port == 4000
        assert config.registry.removal_timeout == 90

    runner = click.testing.CliRunner()
    with mock.patch(
        'rendezvous.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve:
        result = runner.invoke(cli, ['--config', str(filepath)])
        assert result.exit_code == 0, result.output
        mock_serve.assert_awaited_once()


def test_invoke_bind_failure() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'rendezvous.run.serve',
        AsyncMock(side_effect=OSError('Address already in use')),
    ):
        result = runner.invoke(cli)
    assert result.exit_code == 1


def test_serve_bind_failure() -> None:
    port = open_port(socket.SOCK_DGRAM)
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(('127.0.0.1', port))
    config = RendezvousServingConfig(host='127.0.0.1', port=port)

    try:
        with pytest.raises(OSError):
            asyncio.run(serve(config))
    finally:
        sock.close()


@pytest.mark.timeout(5)
@pytest.mark.asyncio()
async def test_serve_until_signal() -> None:
    config = RendezvousServingConfig(
        host='127.0.0.1',
        port=open_port(socket.SOCK_DGRAM),
    )
    task = asyncio.create_task(serve(config))

    async with UDPPeer(config.host, config.port) as peer:
        response = None
        while response is None:
            peer.send(HostRegisterRequest())
            try:
                response = await peer.recv(timeout=0.05)
            except asyncio.TimeoutError:
                pass
        assert isinstance(response, HostRegisterResponse)

    os.kill(os.getpid(), signal.SIGINT)
    await asyncio.wait_for(task, 2)
