"""Utility modules used throughout the rendezvous server."""
from __future__ import annotations
