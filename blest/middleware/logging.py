"""Logging middleware for call tracing."""

import logging
from collections.abc import Mapping
from typing import Any

LOGGER = logging.getLogger(__name__)


class LoggingMiddleware:
    """Before handler that logs every call with its batch correlation.

    Logs each call received at the specified logging level with the
    route, batch id and request id so calls of one batch can be traced
    together. The call body and headers are NOT logged to avoid exposing
    PII or sensitive information.

    Attributes:
        level: The numeric logging level (e.g., logging.INFO,
            logging.DEBUG).

    Examples:
        >>> router = Router()
        >>> router.before(LoggingMiddleware("INFO"))
        >>> router.register("hello", hello)

    Note:
        Register it before the routes it should trace; before handlers
        are captured at registration time.
    """

    __slots__ = ("level",)

    def __init__(self, level: str):
        """Initialize the logging middleware.

        Args:
            level: String representation of the log level (e.g.,
                "INFO", "DEBUG"). Case-insensitive.
        """
        self.level = getattr(logging, level.upper())

    def __call__(self, body: Any, context: Mapping[str, Any]) -> None:
        """Log the call and let the chain continue.

        Args:
            body: The call body (not logged).
            context: The call's request context.
        """
        extra = {
            "route": context.get("route"),
            "batch_id": context.get("batch_id"),
            "request_id": context.get("request_id"),
        }
        LOGGER.log(self.level, "Received Request", extra=extra)
