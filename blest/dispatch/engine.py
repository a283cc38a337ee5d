"""Batch dispatch: validation, concurrent execution and aggregation.

A batch moves through ``Received -> Validated -> Dispatching ->
Aggregating -> Done``. A batch failing validation is rejected as a
whole before any handler runs; every other failure is isolated to the
call that produced it.
"""

import asyncio
import copy
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ulid import ULID

from ..errors import RouteNotFound, format_error
from ..projection import project
from ..routing.executor import HandlerExecutor
from ..routing.route import Route, bind_handler
from ..validation import SELECTOR_HEADER, validate_batch_shape
from .outcome import Err, ErrorKind, Ok, Outcome

LOGGER = logging.getLogger(__name__)

ResultTuple = list[Any]
BatchResponse = tuple[list[ResultTuple] | None, dict[str, Any] | None]


def route_not_found(body: Any, context: Any) -> None:
    raise RouteNotFound()


NOT_FOUND_ROUTE = Route(handlers=(bind_handler(route_not_found),))


@dataclass(frozen=True, slots=True)
class CallRequest:
    """One validated item of a batch."""

    id: str
    route: str
    body: dict[str, Any]
    headers: dict[str, Any] | None
    selector: list[Any] | None

    @classmethod
    def from_item(cls, item: Sequence[Any]) -> "CallRequest":
        body = item[2] if len(item) > 2 and item[2] is not None else {}
        extra = item[3] if len(item) > 3 else None

        headers: dict[str, Any] | None = None
        selector: list[Any] | None = None
        if isinstance(extra, Mapping):
            headers = dict(extra)
            selector = headers.get(SELECTOR_HEADER)
        elif isinstance(extra, (list, tuple)):
            selector = list(extra)

        return cls(id=item[0], route=item[1], body=dict(body), headers=headers, selector=selector)


def batch_error(status: int, message: str) -> BatchResponse:
    return None, {"status": status, "message": message}


class BatchDispatcher:
    """Runs every call of a batch against a route table.

    Each call gets its own deep copy of the caller's context, enriched
    with ``batch_id``, ``request_id``, ``route`` and ``headers``. All
    calls run concurrently; results come back in input order.

    Args:
        routes: Route table to resolve calls against.
        include_stack: Attach stack traces to handler error payloads.
        executor: Runs sync handlers. Without one they use the loop's
            default thread pool.

    Example:
        >>> dispatcher = BatchDispatcher(router.routes)
        >>> results, error = await dispatcher.dispatch(
        ...     [["a1", "echo", {"v": 5}]], {"user": "ada"}
        ... )
    """

    __slots__ = ("routes", "include_stack", "executor")

    def __init__(
        self,
        routes: Mapping[str, Route],
        include_stack: bool = True,
        executor: HandlerExecutor | None = None,
    ):
        self.routes = routes
        self.include_stack = include_stack
        self.executor = executor

    async def dispatch(self, batch: Any, context: Mapping[str, Any] | None = None) -> BatchResponse:
        """Validate, execute and aggregate one batch.

        Args:
            batch: The decoded batch.
            context: Base context shared (by copy) with every call.

        Returns:
            ``(results, None)`` with one result tuple per item, in input
            order, or ``(None, {"status": 400, "message": ...})`` when
            the batch is malformed.
        """
        error = validate_batch_shape(batch)
        if error:
            LOGGER.debug("Rejected batch", extra={"reason": error})
            return batch_error(400, error)

        batch_id = str(ULID())
        base_context = dict(context) if isinstance(context, Mapping) else {}
        requests = [CallRequest.from_item(item) for item in batch]

        results = await asyncio.gather(
            *(self.execute(request, batch_id, base_context) for request in requests)
        )
        return list(results), None

    def resolve(self, name: str) -> Route:
        return self.routes.get(name, NOT_FOUND_ROUTE)

    async def execute(
        self, request: CallRequest, batch_id: str, base_context: dict[str, Any]
    ) -> ResultTuple:
        """Execute one call and convert its outcome to a result tuple."""
        context = copy.deepcopy(base_context)
        context.update(
            batch_id=batch_id,
            request_id=request.id,
            route=request.route,
            headers=copy.deepcopy(request.headers),
        )

        outcome = await self.run_call(request, context)
        if isinstance(outcome, Err):
            LOGGER.debug(
                "Call failed",
                extra={
                    "request_id": request.id,
                    "route": request.route,
                    "kind": outcome.kind.value,
                },
            )
            return [request.id, request.route, None, outcome.error]

        result = outcome.value
        if request.selector is not None:
            result = project(result, request.selector)
        return [request.id, request.route, result, None]

    async def run_call(self, request: CallRequest, context: dict[str, Any]) -> Outcome:
        """Run the call's route chain within the route's timeout.

        An expired timeout cancels the chain and yields a ``TIMEOUT``
        outcome; whatever the chain would have produced is discarded.
        """
        route = self.resolve(request.route)
        if route.timeout <= 0:
            return await self.run_chain(route, request, context)

        try:
            return await asyncio.wait_for(
                self.run_chain(route, request, context), route.timeout / 1000
            )
        except asyncio.TimeoutError:
            LOGGER.warning(
                "The route %r timed out after %d milliseconds",
                request.route,
                route.timeout,
                extra={"batch_id": context.get("batch_id"), "request_id": request.id},
            )
            return Err.internal(ErrorKind.TIMEOUT)

    async def run_chain(
        self, route: Route, request: CallRequest, context: dict[str, Any]
    ) -> Outcome:
        """Run a route's handler chain until it fails or completes.

        The chain result is the one non-None value returned by its
        handlers. A second non-None value is a conflict.
        """
        result: Any = None
        for handler in route.handlers:
            try:
                value = await handler(request.body, context, self.executor)
            except Exception as exc:
                kind = ErrorKind.NOT_FOUND if isinstance(exc, RouteNotFound) else ErrorKind.HANDLER
                if kind is ErrorKind.HANDLER:
                    LOGGER.error(
                        "The route %r raised an error",
                        request.route,
                        exc_info=exc,
                        extra={"request_id": request.id},
                    )
                return Err(kind, format_error(exc, self.include_stack))

            if value is None:
                continue
            if result is not None:
                LOGGER.warning(
                    "Multiple handlers on the route %r returned results",
                    request.route,
                    extra={"request_id": request.id},
                )
                return Err.internal(ErrorKind.CONFLICT)
            result = value

        if not isinstance(result, Mapping):
            LOGGER.warning(
                "The route %r did not return a result object",
                request.route,
                extra={"request_id": request.id},
            )
            return Err.internal(ErrorKind.INVALID_RESULT)

        return Ok(dict(result))
