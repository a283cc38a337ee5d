"""Route registry: route names, handler chains and composition."""

from .executor import HandlerExecutor
from .route import BoundHandler, Handler, Route, RouteDescription, bind_handler
from .router import Router, create_request_handler

__all__ = [
    "BoundHandler",
    "Handler",
    "HandlerExecutor",
    "Route",
    "RouteDescription",
    "Router",
    "bind_handler",
    "create_request_handler",
]
