from __future__ import annotations

# Import fixtures from testing/ so they are known by pytest
from testing.rendezvous_server import udp_rendezvous_server  # noqa: F401
from testing.rendezvous_server import websocket_rendezvous_server  # noqa: F401
