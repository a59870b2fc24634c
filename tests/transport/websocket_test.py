from __future__ import annotations

import asyncio
import json

import pytest
import websockets.exceptions
from websockets.asyncio.client import connect

from rendezvous.activity import PeerActivity
from rendezvous.exceptions import TransportNotStartedError
from rendezvous.messages import ClientLookupResponse
from rendezvous.messages import decode_message
from rendezvous.messages import encode_message
from rendezvous.messages import HostLookupRequest
from rendezvous.messages import HostLookupResponse
from rendezvous.messages import HostRegisterRequest
from rendezvous.messages import HostRegisterResponse
from rendezvous.messages import PingRequest
from rendezvous.messages import PingResponse
from rendezvous.transport.address import format_address
from rendezvous.transport.protocols import ConnectionTransport
from rendezvous.transport.protocols import Datagram
from rendezvous.transport.protocols import PeerLifecycleListener
from rendezvous.transport.websocket import TRY_AGAIN_LATER
from rendezvous.transport.websocket import WebSocketTransport
from testing.rendezvous_server import RendezvousServerInfo


class RecordingListener:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def peer_connected(self, address: str) -> None:
        self.events.append(('connected', address))

    def peer_disconnected(self, address: str) -> None:
        self.events.append(('disconnected', address))


async def poll_until(
    transport: WebSocketTransport,
    timeout: float = 1,
) -> Datagram:
    async def _poll() -> Datagram:
        while True:
            datagram = transport.poll()
            if datagram is not None:
                return datagram
            await asyncio.sleep(0.001)

    return await asyncio.wait_for(_poll(), timeout)


async def wait_for_condition(condition, timeout: float = 1) -> None:
    async def _wait() -> None:
        while not condition():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_wait(), timeout)


def uri(transport: WebSocketTransport) -> str:
    host, port = transport.address
    return f'ws://{host}:{port}'


@pytest.mark.asyncio()
async def test_conforms_to_protocol() -> None:
    transport = WebSocketTransport()
    assert isinstance(transport, ConnectionTransport)
    assert isinstance(RecordingListener(), PeerLifecycleListener)
    assert isinstance(PeerActivity(10), PeerLifecycleListener)


@pytest.mark.asyncio()
async def test_not_started() -> None:
    transport = WebSocketTransport('127.0.0.1', 0)
    assert transport.poll() is None
    with pytest.raises(TransportNotStartedError):
        await transport.send(b'data', '127.0.0.1:4422')
    with pytest.raises(TransportNotStartedError):
        transport.address  # noqa: B018
    await transport.disconnect('127.0.0.1:4422')


@pytest.mark.asyncio()
async def test_send_and_poll() -> None:
    listener = RecordingListener()
    async with WebSocketTransport(
        '127.0.0.1',
        0,
        listener=listener,
    ) as transport:
        async with connect(uri(transport)) as websocket:
            address = format_address(websocket.local_address)
            await websocket.send(b'binary')
            await websocket.send('text')

            first = await poll_until(transport)
            second = await poll_until(transport)
            assert first == Datagram(b'binary', address)
            assert second == Datagram(b'text', address)
            assert listener.events == [('connected', address)]
            assert transport.connections() == [address]

            assert await transport.send(b'reply', address) == 5
            assert await asyncio.wait_for(websocket.recv(), 1) == b'reply'

        await wait_for_condition(lambda: transport.connections() == [])
        assert transport.poll() is None
        assert listener.events[-1] == ('disconnected', address)


@pytest.mark.asyncio()
async def test_send_to_unknown_peer_sends_nothing() -> None:
    async with WebSocketTransport('127.0.0.1', 0) as transport:
        assert await transport.send(b'data', '127.0.0.1:1') == 0


@pytest.mark.asyncio()
async def test_forced_disconnect() -> None:
    async with WebSocketTransport('127.0.0.1', 0) as transport:
        async with connect(uri(transport)) as websocket:
            address = format_address(websocket.local_address)
            await wait_for_condition(
                lambda: address in transport.connections(),
            )

            await transport.disconnect(address)
            with pytest.raises(websockets.exceptions.ConnectionClosed):
                await asyncio.wait_for(websocket.recv(), 1)

        await wait_for_condition(lambda: transport.connections() == [])
        assert await transport.send(b'data', address) == 0


@pytest.mark.asyncio()
async def test_max_connections() -> None:
    async with WebSocketTransport(
        '127.0.0.1',
        0,
        max_connections=1,
    ) as transport:
        async with connect(uri(transport)) as first:
            address = format_address(first.local_address)
            await wait_for_condition(
                lambda: address in transport.connections(),
            )

            async with connect(uri(transport)) as second:
                with pytest.raises(
                    websockets.exceptions.ConnectionClosed,
                ) as exc_info:
                    await asyncio.wait_for(second.recv(), 1)
                assert exc_info.value.rcvd is not None
                assert exc_info.value.rcvd.code == TRY_AGAIN_LATER

            assert transport.connections() == [address]


@pytest.mark.asyncio()
async def test_oversized_message_closes_connection() -> None:
    async with WebSocketTransport(
        '127.0.0.1',
        0,
        max_message_bytes=16,
    ) as transport:
        async with connect(uri(transport)) as websocket:
            await websocket.send(b'x' * 32)
            with pytest.raises(websockets.exceptions.ConnectionClosed):
                await asyncio.wait_for(websocket.recv(), 1)
        assert transport.poll() is None


@pytest.mark.asyncio()
async def test_rendezvous_over_websockets(
    websocket_rendezvous_server: RendezvousServerInfo,
) -> None:
    info = websocket_rendezvous_server
    address = f'ws://{info.host}:{info.port}'

    async with connect(address) as host, connect(address) as client:
        host_address = format_address(host.local_address)
        client_address = format_address(client.local_address)

        await host.send(encode_message(HostRegisterRequest()))
        response = decode_message(await asyncio.wait_for(host.recv(), 1))
        assert isinstance(response, HostRegisterResponse)
        code = response.host_code

        await host.send(encode_message(PingRequest()))
        response = decode_message(await asyncio.wait_for(host.recv(), 1))
        assert response == PingResponse()

        await client.send(
            encode_message(HostLookupRequest(host_code=code)),
        )
        response = decode_message(await asyncio.wait_for(client.recv(), 1))
        assert response == HostLookupResponse(
            success=True,
            host_info=host_address,
        )
        response = decode_message(await asyncio.wait_for(host.recv(), 1))
        assert response == ClientLookupResponse(client_info=client_address)

        await client.send(json.dumps({'msg_type': 'Bogus'}))
        await client.send(encode_message(HostLookupRequest(host_code='')))
        response = decode_message(await asyncio.wait_for(client.recv(), 1))
        assert response == HostLookupResponse(success=False, host_info='')

        assert info.server.activity is not None
        assert host_address not in info.server.activity
        assert client_address in info.server.activity
