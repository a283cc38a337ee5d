"""Ready-made before/after handlers.

Any callable taking ``(body, context)`` and returning None can be used
as a before or after handler; these cover common cross-cutting concerns.
"""

from .logging import LoggingMiddleware

__all__ = [
    "LoggingMiddleware",
]
