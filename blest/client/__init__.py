"""Batching client and its transports."""

from .client import Client, PendingCall
from .transport import HttpTransport, InMemoryTransport, Transport

__all__ = [
    "Client",
    "HttpTransport",
    "InMemoryTransport",
    "PendingCall",
    "Transport",
]
