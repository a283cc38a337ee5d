"""Blest - batched RPC routing and client multiplexing for Python.

This module provides the public API for serving and calling batched
requests.
"""

from .client import Client, HttpTransport, InMemoryTransport, Transport
from .config import ClientSettings, RouterSettings
from .errors import BlestError, RouteConfigurationError, RouteNotFound, TransportError
from .projection import project
from .routing import Router, create_request_handler
from .validation import validate_batch_shape, validate_route_name, validate_router_options

__all__ = [
    # Server
    "Router",
    "RouterSettings",
    "create_request_handler",
    # Client
    "Client",
    "ClientSettings",
    "HttpTransport",
    "InMemoryTransport",
    "Transport",
    # Errors
    "BlestError",
    "RouteConfigurationError",
    "RouteNotFound",
    "TransportError",
    # Utilities
    "project",
    "validate_batch_shape",
    "validate_route_name",
    "validate_router_options",
]
