"""Route registry with before/after handlers, merging and namespacing."""

from collections.abc import Callable, Iterator, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from ..config import RouterSettings
from ..dispatch.engine import BatchDispatcher, BatchResponse
from ..errors import RouteConfigurationError
from ..validation import validate_route_name, validate_router_options
from .executor import HandlerExecutor
from .route import BoundHandler, Handler, Route, bind_handler, parse_description


class Router:
    """Registry of named routes and the entry point for batches.

    Before and after handlers are captured when a route is registered:
    adding one later does not change routes that already exist. Routes
    copied in by ``merge`` or ``namespace`` are wrapped in this router's
    before/after handlers at the time of the copy.

    Args:
        timeout: Default per-route timeout in milliseconds.
        introspection: Default ``visible`` flag of new routes.
        environment: Deployment environment; stack traces are hidden in
            ``"production"``.
        settings: Base settings. Explicit keyword arguments override it.

    Raises:
        RouteConfigurationError: If an option has the wrong type.

    Examples:
        >>> router = Router(timeout=1000)
        >>>
        >>> @router.route("echo")
        ... def echo(body, context):
        ...     return {"value": body.get("v")}
        >>>
        >>> results, error = await router.handle([["id1", "echo", {"v": 5}]])
        >>> results
        [['id1', 'echo', {'value': 5}, None]]
    """

    def __init__(
        self,
        *,
        timeout: int | None = None,
        introspection: bool | None = None,
        environment: str | None = None,
        settings: RouterSettings | None = None,
    ):
        options = {
            key: value
            for key, value in (
                ("timeout", timeout),
                ("introspection", introspection),
                ("environment", environment),
            )
            if value is not None
        }
        error = validate_router_options(options)
        if error:
            raise RouteConfigurationError(error)

        base = settings or RouterSettings()
        self.settings = base.model_copy(update=options) if options else base
        self._before: tuple[BoundHandler, ...] = ()
        self._after: tuple[BoundHandler, ...] = ()
        self._routes: dict[str, Route] = {}
        self._executor = HandlerExecutor(self.settings.max_workers)

    @property
    def timeout(self) -> int:
        return self.settings.timeout

    @property
    def routes(self) -> Mapping[str, Route]:
        """Read-only view of the registered routes."""
        return MappingProxyType(self._routes)

    def __contains__(self, name: object) -> bool:
        return name in self._routes

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._routes)

    def before(self, handler: Handler) -> Handler:
        """Add a handler that runs before every route registered afterwards.

        Can be used as a decorator.

        Raises:
            RouteConfigurationError: If the handler is not callable or
                takes more than two parameters.
        """
        self._before = (*self._before, bind_handler(handler, "Before"))
        return handler

    def after(self, handler: Handler) -> Handler:
        """Add a handler that runs after every route registered afterwards.

        Can be used as a decorator.

        Raises:
            RouteConfigurationError: If the handler is not callable or
                takes more than two parameters.
        """
        self._after = (*self._after, bind_handler(handler, "After"))
        return handler

    def register(self, name: str, handler: Handler | Sequence[Handler]) -> None:
        """Register a route.

        Args:
            name: The route name.
            handler: A handler or a non-empty sequence of handlers run
                in order.

        Raises:
            RouteConfigurationError: If the name is invalid or already
                registered, or the chain is empty or holds a
                non-callable.
        """
        route_error = validate_route_name(name)
        if route_error:
            raise RouteConfigurationError(route_error)
        if name in self._routes:
            raise RouteConfigurationError(f"Route already exists: {name}")

        chain = list(handler) if isinstance(handler, (list, tuple)) else [handler]
        if not chain:
            raise RouteConfigurationError(f"Route has no handlers: {name}")
        bound = tuple(bind_handler(item) for item in chain)

        self._routes[name] = Route(
            handlers=(*self._before, *bound, *self._after),
            timeout=self.settings.timeout,
            visible=self.settings.introspection,
        )

    def route(self, name: str) -> Callable[[Handler], Handler]:
        """Decorator form of ``register``.

        Example:
            >>> @router.route("users/get")
            ... async def get_user(body, context):
            ...     return {"id": body["id"]}
        """

        def decorator(handler: Handler) -> Handler:
            self.register(name, handler)
            return handler

        return decorator

    def describe(self, name: str, config: Mapping[str, Any]) -> None:
        """Update the optional metadata of a route.

        Only the supplied fields are changed. Accepted keys are
        ``description`` (str or None), ``schema``/``parameters`` (dict or
        None), ``visible`` (bool), ``validate`` (bool) and ``timeout``
        (positive int milliseconds).

        Raises:
            RouteConfigurationError: If the route does not exist or a
                field is unknown or has the wrong type.
        """
        if name not in self._routes:
            raise RouteConfigurationError(f"Route does not exist: {name}")
        description = parse_description(name, config)
        description.apply(self._routes[name])

    def merge(self, other: "Router") -> None:
        """Copy every route of ``other`` into this router.

        Raises:
            RouteConfigurationError: If ``other`` is not a router, has no
                routes, or any of its names already exist here. Nothing
                is copied in that case.
        """
        self._copy_from(other, prefix=None)

    def namespace(self, prefix: str, other: "Router") -> None:
        """Copy every route of ``other`` under ``prefix/``.

        Raises:
            RouteConfigurationError: If ``prefix`` is not a valid route
                name, ``other`` is not a router or has no routes, or any
                prefixed name already exists here.
        """
        prefix_error = validate_route_name(prefix)
        if prefix_error:
            raise RouteConfigurationError(prefix_error)
        self._copy_from(other, prefix=prefix)

    def _copy_from(self, other: "Router", prefix: str | None) -> None:
        if not isinstance(other, Router):
            raise RouteConfigurationError("Router is required")
        if not other._routes:
            action = "merge" if prefix is None else "namespace"
            raise RouteConfigurationError(f"No routes to {action}")

        renamed = {
            (name if prefix is None else f"{prefix}/{name}"): route
            for name, route in other._routes.items()
        }
        for name in renamed:
            if name in self._routes:
                raise RouteConfigurationError(f"Cannot merge duplicate routes: {name}")

        for name, route in renamed.items():
            self._routes[name] = route.wrapped(self._before, self._after, self.settings.timeout)

    async def handle(self, batch: Any, context: Mapping[str, Any] | None = None) -> BatchResponse:
        """Dispatch a batch against this router.

        Args:
            batch: The decoded request body.
            context: Base context copied into every call.

        Returns:
            ``(results, None)`` or ``(None, error)`` for a malformed batch.
        """
        dispatcher = BatchDispatcher(
            self._routes,
            include_stack=not self.settings.is_production,
            executor=self._executor,
        )
        return await dispatcher.dispatch(batch, context)

    def close(self) -> None:
        """Release the worker threads of sync handlers.

        Handlers still running finish in the background. The router stays
        usable; a later batch starts a fresh pool.
        """
        self._executor.shutdown()


def create_request_handler(
    routes: Mapping[str, Any],
    settings: RouterSettings | None = None,
) -> Callable[..., Any]:
    """Build a batch handler from a mapping of routes.

    Each value is a handler, a sequence of handlers, or a mapping with a
    ``handler`` key plus any ``describe`` fields.

    Args:
        routes: Route name to route definition.
        settings: Optional router settings.

    Returns:
        The ``handle(batch, context=None)`` coroutine function.

    Raises:
        RouteConfigurationError: If any route definition is invalid.

    Example:
        >>> handle = create_request_handler({
        ...     "hello": lambda body, context: {"hello": "world"},
        ...     "greet": {"handler": greet, "timeout": 200},
        ... })
        >>> results, error = await handle([["a1", "hello"]])
    """
    if not isinstance(routes, Mapping):
        raise RouteConfigurationError("A routes object is required")

    router = Router(settings=settings)
    for name, definition in routes.items():
        if isinstance(definition, Mapping):
            if "handler" not in definition:
                raise RouteConfigurationError(f"Route has no handlers: {name}")
            router.register(name, definition["handler"])
            config = {key: value for key, value in definition.items() if key != "handler"}
            if config:
                router.describe(name, config)
        elif callable(definition) or isinstance(definition, (list, tuple)):
            router.register(name, definition)
        else:
            raise RouteConfigurationError(f"Route is missing handler: {name}")

    return router.handle
