"""Rendezvous server for introducing peers behind short host codes.

A host registers with the server and receives a short code which it shares
out-of-band. A client resolves the code back into the host's transport
address and the server tells the host who is about to connect, after which
the two peers talk to each other directly.
"""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('rendezvous-server')
