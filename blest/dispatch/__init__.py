"""Batch dispatch engine."""

from .engine import BatchDispatcher, BatchResponse, CallRequest, route_not_found
from .outcome import INTERNAL_ERROR, Err, ErrorKind, Ok, Outcome

__all__ = [
    "BatchDispatcher",
    "BatchResponse",
    "CallRequest",
    "Err",
    "ErrorKind",
    "INTERNAL_ERROR",
    "Ok",
    "Outcome",
    "route_not_found",
]
