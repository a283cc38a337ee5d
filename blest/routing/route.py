"""Route entries and handler binding.

Handlers are plain callables taking up to two positional parameters,
``(body, context)``. Both sync and async callables are accepted::

    def echo(body, context):
        return {"value": body["v"]}

    async def who(body, context):
        return {"request": context["request_id"]}

    def audit(_, context):  # before/after handlers usually return None
        context["seen"] = True

The arity is checked once, when the handler is bound to a route.
"""

import asyncio
import copy
import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PositiveInt, ValidationError

from ..errors import RouteConfigurationError
from .executor import HandlerExecutor

Handler = Callable[..., Any]

MAX_HANDLER_PARAMETERS = 2

_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


def handler_arity(handler: Handler) -> int | None:
    """Return how many of ``(body, context)`` a handler accepts.

    Args:
        handler: The callable to inspect.

    Returns:
        The number of positional arguments to pass (0 to 2), or None if
        the handler requires more than two parameters.
    """
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        # Builtins without a signature get the full argument list
        return MAX_HANDLER_PARAMETERS

    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return MAX_HANDLER_PARAMETERS
        if parameter.kind in _POSITIONAL:
            positional += 1
        elif (
            parameter.kind is inspect.Parameter.KEYWORD_ONLY
            and parameter.default is inspect.Parameter.empty
        ):
            return None

    if positional > MAX_HANDLER_PARAMETERS:
        return None
    return positional


def _is_coroutine_callable(handler: Handler) -> bool:
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)
    return inspect.iscoroutinefunction(call)


@dataclass(frozen=True, slots=True)
class BoundHandler:
    """A handler normalized to the ``(body, context)`` interface.

    Coroutine handlers run on the event loop. Sync handlers run on the
    given executor, or in the loop's default thread pool without one, so
    a slow handler never blocks sibling calls and can be abandoned by a
    timeout.
    """

    func: Handler
    arity: int
    is_async: bool

    async def __call__(
        self,
        body: dict[str, Any],
        context: dict[str, Any],
        executor: HandlerExecutor | None = None,
    ) -> Any:
        args = (body, context)[: self.arity]
        if self.is_async:
            result = self.func(*args)
        elif executor is not None:
            result = await executor.run(self.func, *args)
        else:
            result = await asyncio.to_thread(self.func, *args)
        if inspect.isawaitable(result):
            result = await result
        return result


def bind_handler(handler: Any, kind: str = "Route") -> BoundHandler:
    """Validate a handler and bind it to the two-parameter interface.

    Args:
        handler: The candidate handler. Already bound handlers are
            returned unchanged.
        kind: Label used in error messages ("Route", "Before", "After").

    Returns:
        The bound handler.

    Raises:
        RouteConfigurationError: If the handler is not callable or
            requires more than two parameters.
    """
    if isinstance(handler, BoundHandler):
        return handler
    if not callable(handler):
        raise RouteConfigurationError(f"{kind} handlers should be callable")
    arity = handler_arity(handler)
    if arity is None:
        raise RouteConfigurationError(
            f"{kind} handlers should have at most {MAX_HANDLER_PARAMETERS} parameters"
        )
    return BoundHandler(func=handler, arity=arity, is_async=_is_coroutine_callable(handler))


@dataclass
class Route:
    """A registered route: its handler chain and per-route configuration.

    Attributes:
        handlers: Before handlers, route handlers and after handlers,
            in execution order.
        timeout: Per-call deadline in milliseconds; 0 disables it.
        description: Optional human readable description.
        schema: Optional structural metadata. Stored, never enforced.
        visible: Whether the route is advertised to introspection.
        validate: Whether the route asks for body validation. Stored,
            never enforced.
    """

    handlers: tuple[BoundHandler, ...]
    timeout: int = 0
    description: str | None = None
    schema: dict[str, Any] | None = None
    visible: bool = False
    validate: bool = False

    def wrapped(
        self,
        before: tuple[BoundHandler, ...],
        after: tuple[BoundHandler, ...],
        default_timeout: int,
    ) -> "Route":
        """Copy this route for another router.

        Args:
            before: The destination router's before handlers.
            after: The destination router's after handlers.
            default_timeout: Timeout used when this route has none.

        Returns:
            A new route whose chain is wrapped in ``before``/``after``.
            Mutable metadata is deep-copied, never shared.
        """
        return replace(
            self,
            handlers=(*before, *self.handlers, *after),
            timeout=self.timeout or default_timeout,
            schema=copy.deepcopy(self.schema),
        )


class RouteDescription(BaseModel):
    """Strictly typed payload accepted by ``Router.describe``.

    Only fields present in the payload are applied to the route.
    ``parameters`` is accepted as an alias of ``schema``.
    """

    model_config = ConfigDict(strict=True, extra="forbid")

    description: str | None = None
    route_schema: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("schema", "parameters", "route_schema")
    )
    visible: bool = False
    validate_body: bool = Field(
        default=False, validation_alias=AliasChoices("validate", "validate_body")
    )
    timeout: PositiveInt = 5000

    def apply(self, route: Route) -> None:
        fields = self.model_fields_set
        if "description" in fields:
            route.description = self.description
        if "route_schema" in fields:
            route.schema = copy.deepcopy(self.route_schema)
        if "visible" in fields:
            route.visible = self.visible
        if "validate_body" in fields:
            route.validate = self.validate_body
        if "timeout" in fields:
            route.timeout = self.timeout


def parse_description(name: str, config: Any) -> RouteDescription:
    """Type-check a describe payload.

    Raises:
        RouteConfigurationError: If the payload is not a mapping or any
            field has the wrong type.
    """
    if not isinstance(config, Mapping):
        raise RouteConfigurationError("Configuration should be an object")
    try:
        return RouteDescription.model_validate(dict(config))
    except ValidationError as exc:
        error = exc.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        raise RouteConfigurationError(
            f"Invalid configuration for route {name!r}: {location}: {error['msg']}"
        ) from exc
