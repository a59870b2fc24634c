"""Transports the rendezvous server can run on.

* [`UDPTransport`][rendezvous.transport.udp.UDPTransport]: connectionless
  datagrams where the origin of each message is the sender's ephemeral
  address.
* [`WebSocketTransport`][rendezvous.transport.websocket.WebSocketTransport]:
  one reliable, ordered connection per peer with connect and disconnect
  events and forced disconnects.
"""
from __future__ import annotations

from rendezvous.transport.protocols import ConnectionTransport
from rendezvous.transport.protocols import Datagram
from rendezvous.transport.protocols import PeerLifecycleListener
from rendezvous.transport.protocols import Transport
from rendezvous.transport.udp import UDPTransport
from rendezvous.transport.websocket import WebSocketTransport
