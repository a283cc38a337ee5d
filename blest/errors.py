"""Exceptions shared by the router, the dispatch engine and the client.

Handlers raise ``BlestError`` (or any exception carrying a ``status``)
to control the error payload returned for their call. Registration and
configuration failures raise ``RouteConfigurationError``.
"""

import traceback
from collections.abc import Mapping
from typing import Any


class BlestError(Exception):
    """An error that maps onto a per-call error payload.

    Attributes:
        message: Human readable message returned to the caller.
        status: HTTP-like status code. Defaults to 500.
        code: Optional application error code (copied when a string).
        data: Optional structured data (copied when a mapping).
        stack: Optional remote stack trace, set on errors rebuilt by the
            client from a response payload.

    Examples:
        >>> async def withdraw(body, context):
        ...     if body["amount"] > 100:
        ...         raise BlestError(
        ...             "Limit exceeded", status=422, code="LIMIT", data={"max": 100}
        ...         )
    """

    # Not-found errors are expected and carry no stack trace
    expose_stack: bool = True

    def __init__(
        self,
        message: str = "Internal Server Error",
        status: int = 500,
        code: str | None = None,
        data: dict[str, Any] | None = None,
        stack: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.data = data
        self.stack = stack

    @classmethod
    def from_payload(cls, payload: Any) -> "BlestError":
        """Rebuild an error from a wire error payload.

        Args:
            payload: The error slot of a result tuple. Non-mapping
                payloads are stringified into the message.

        Returns:
            A new error with the payload's fields.
        """
        if not isinstance(payload, Mapping):
            return cls(str(payload))
        status = payload.get("status")
        return cls(
            str(payload.get("message") or "Internal Server Error"),
            status=status if isinstance(status, int) else 500,
            code=payload.get("code"),
            data=payload.get("data"),
            stack=payload.get("stack"),
        )


class RouteNotFound(BlestError):  # noqa: N818
    """404 - no route is registered under the requested name."""

    expose_stack = False

    def __init__(self, message: str = "Not Found"):
        super().__init__(message, status=404)


class TransportError(BlestError):
    """Raised when an outbound batch could not be delivered or answered.

    Every pending call of the affected chunk is rejected with it.
    """


class RouteConfigurationError(ValueError):
    """Raised when a route, handler, description or option is invalid."""


def format_error(error: BaseException, include_stack: bool) -> dict[str, Any]:
    """Normalize an exception into a wire error payload.

    Args:
        error: The exception raised while handling a call.
        include_stack: Whether the formatted traceback may be attached.

    Returns:
        A payload with ``message`` and ``status`` plus ``code``, ``data``
        and ``stack`` when available and well typed.
    """
    status = getattr(error, "status", None)
    message = getattr(error, "message", None) or str(error)
    payload: dict[str, Any] = {
        "message": message or "Internal Server Error",
        "status": status if isinstance(status, int) and not isinstance(status, bool) else 500,
    }

    code = getattr(error, "code", None)
    if isinstance(code, str):
        payload["code"] = code

    data = getattr(error, "data", None)
    if isinstance(data, Mapping):
        payload["data"] = dict(data)

    if include_stack and getattr(error, "expose_stack", True):
        payload["stack"] = traceback.format_tb(error.__traceback__)

    return payload
