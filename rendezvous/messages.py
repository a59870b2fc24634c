"""Message types exchanged between peers and the rendezvous server.

Every message is a UTF-8 encoded JSON object whose `msg_type` key selects
the message variant, e.g.,
`{"msg_type":"HostLookupRequest","host_code":"3F2A9B1C"}`.
"""
from __future__ import annotations

import dataclasses
import enum
import json
from typing import Any

NUL = b'\x00'


class MessageType(enum.Enum):
    """Types of messages supported."""

    ping_request = 'PingRequest'
    """Liveness ping sent by a host to the server."""
    ping_response = 'PingResponse'
    """Liveness ping sent by the server to a host."""
    host_register_request = 'HostRegisterRequest'
    """Host requesting a rendezvous code."""
    host_register_response = 'HostRegisterResponse'
    """Server reply with the host's rendezvous code."""
    host_lookup_request = 'HostLookupRequest'
    """Client requesting the address of the host owning a code."""
    host_lookup_response = 'HostLookupResponse'
    """Server reply to a host lookup."""
    client_lookup_response = 'ClientLookupResponse'
    """Server notice to a host that a client resolved its code."""


@dataclasses.dataclass
class RendezvousMessage:
    """Base message."""

    pass


@dataclasses.dataclass
class PingRequest(RendezvousMessage):
    """Ping sent by a registered host to keep its registration alive."""

    msg_type: str = MessageType.ping_request.value


@dataclasses.dataclass
class PingResponse(RendezvousMessage):
    """Ping sent by the server to a registered host."""

    msg_type: str = MessageType.ping_response.value


@dataclasses.dataclass
class HostRegisterRequest(RendezvousMessage):
    """Request to be registered as a host under a new rendezvous code."""

    msg_type: str = MessageType.host_register_request.value


@dataclasses.dataclass
class HostRegisterResponse(RendezvousMessage):
    """Reply to a registration request.

    Attributes:
        host_code: Rendezvous code assigned to the host. Repeated requests
            from the same address get the same code.
    """

    host_code: str
    msg_type: str = MessageType.host_register_response.value


@dataclasses.dataclass
class HostLookupRequest(RendezvousMessage):
    """Request to resolve a rendezvous code into the host's address.

    Attributes:
        host_code: Rendezvous code to resolve. A missing code or a code which
            is not a string is treated the same as an empty code.
    """

    host_code: str = ''
    msg_type: str = MessageType.host_lookup_request.value


@dataclasses.dataclass
class HostLookupResponse(RendezvousMessage):
    """Reply to a host lookup.

    Attributes:
        success: If the code resolved to a registered host.
        host_info: Address of the host or an empty string on failure.
    """

    success: bool
    host_info: str
    msg_type: str = MessageType.host_lookup_response.value


@dataclasses.dataclass
class ClientLookupResponse(RendezvousMessage):
    """Notice sent to a host when a client resolved its code.

    Attributes:
        client_info: Address of the client that performed the lookup.
    """

    client_info: str
    msg_type: str = MessageType.client_lookup_response.value


_MESSAGE_CLASSES: dict[MessageType, type[RendezvousMessage]] = {
    MessageType.ping_request: PingRequest,
    MessageType.ping_response: PingResponse,
    MessageType.host_register_request: HostRegisterRequest,
    MessageType.host_register_response: HostRegisterResponse,
    MessageType.host_lookup_request: HostLookupRequest,
    MessageType.host_lookup_response: HostLookupResponse,
    MessageType.client_lookup_response: ClientLookupResponse,
}

_FIELD_TYPES: dict[str, type] = {'str': str, 'bool': bool}


class MessageError(Exception):
    """Base exception type for rendezvous messages."""

    pass


class MessageDecodeError(MessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class MessageEncodeError(MessageError):
    """Exception raised when a message cannot be encoded."""

    pass


def _check_field_types(
    message_type: type[RendezvousMessage],
    data: dict[str, Any],
) -> dict[str, Any]:
    checked = dict(data)
    for field in dataclasses.fields(message_type):
        if field.name not in data:
            continue
        expected = _FIELD_TYPES[str(field.type)]
        if isinstance(data[field.name], expected):
            continue
        if field.default is not dataclasses.MISSING:
            # Optional fields of the wrong type take their default
            del checked[field.name]
        else:
            raise MessageDecodeError(
                f'Field {field.name} of {message_type.__name__} must be of '
                f'type {expected.__name__} but got '
                f'{type(data[field.name]).__name__}.',
            )
    return checked


def decode_message(
    payload: bytes,
    *,
    nul_terminated: bool = False,
) -> RendezvousMessage:
    """Decode a UTF-8 JSON payload into the correct message type.

    Keys which are not fields of the selected message type are ignored.
    An optional field with a value of the wrong type, e.g., a `null`
    `host_code`, takes its default value.

    Args:
        payload: Raw bytes received from a peer.
        nul_terminated: Strip a single trailing NUL byte before decoding,
            if present.

    Returns:
        Parsed message.

    Raises:
        MessageDecodeError: If the payload is not valid UTF-8 JSON, is not
            a JSON object, is missing the `msg_type` key, names an unknown
            message type, or has required fields of the wrong type.
    """
    if nul_terminated and payload.endswith(NUL):
        payload = payload[:-1]

    try:
        data = json.loads(payload.decode('utf-8'))
    except UnicodeDecodeError as e:
        raise MessageDecodeError('Payload is not valid UTF-8.') from e
    except (json.JSONDecodeError, RecursionError) as e:
        raise MessageDecodeError('Failed to load payload as JSON.') from e

    if not isinstance(data, dict):
        raise MessageDecodeError(
            f'Expected a JSON object but got {type(data).__name__}.',
        )

    try:
        message_type_name = data.pop('msg_type')
    except KeyError as e:
        raise MessageDecodeError(
            'Message does not contain a msg_type key.',
        ) from e

    try:
        message_type = _MESSAGE_CLASSES[MessageType(message_type_name)]
    except (KeyError, ValueError) as e:
        raise MessageDecodeError(
            f'The message is of an unknown message type: {message_type_name}.',
        ) from e

    names = {field.name for field in dataclasses.fields(message_type)}
    data = {key: value for key, value in data.items() if key in names}
    data = _check_field_types(message_type, data)

    try:
        return message_type(**data)
    except TypeError as e:
        raise MessageDecodeError(
            f'Failed to convert message to {message_type.__name__}: {e}',
        ) from e


def encode_message(
    message: RendezvousMessage,
    *,
    nul_terminated: bool = False,
) -> bytes:
    """Encode a message as a compact UTF-8 JSON payload.

    Args:
        message: Message to encode.
        nul_terminated: Append a single NUL byte to the payload.

    Raises:
        MessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, RendezvousMessage):
        raise MessageEncodeError(
            f'Message is not an instance of {RendezvousMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data = dataclasses.asdict(message)
    data = {'msg_type': data.pop('msg_type'), **data}

    try:
        payload = json.dumps(data, separators=(',', ':')).encode('utf-8')
    except (TypeError, ValueError) as e:
        raise MessageEncodeError('Error encoding message.') from e

    return payload + NUL if nul_terminated else payload
