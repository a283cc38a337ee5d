"""Structural validation for route names, batches and router options.

All functions are pure and return an error message or ``None``. They
never raise for well-typed input, so callers decide whether a violation
is a registration error or a batch-level rejection.
"""

import re
from collections.abc import Mapping
from typing import Any

ROUTE_PATTERN = re.compile(r"[a-zA-Z][a-zA-Z0-9_\-/]*[a-zA-Z0-9]")
SYSTEM_ROUTE_PATTERN = re.compile(r"_[a-zA-Z][a-zA-Z0-9_\-/]*[a-zA-Z0-9]")

_LETTER = re.compile(r"[a-zA-Z]")
_ALPHANUMERIC = re.compile(r"[a-zA-Z0-9]")

# Checked in order once the whole name matches its base pattern
_SEGMENT_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"/[^a-zA-Z]"), "Sub-routes should start with a letter"),
    (re.compile(r"[^a-zA-Z0-9]/"), "Sub-routes should end with a letter or a number"),
    (re.compile(r"/[a-zA-Z0-9_\-]?/"), "Sub-routes should be at least two characters long"),
    (re.compile(r"/[a-zA-Z0-9_\-]\Z"), "Sub-routes should be at least two characters long"),
    (re.compile(r"\A[a-zA-Z0-9_\-]/"), "Sub-routes should be at least two characters long"),
)

SELECTOR_HEADER = "_s"

ROUTER_OPTIONS = frozenset({"timeout", "introspection", "environment"})


def validate_route_name(route: Any, system: bool = False) -> str | None:
    """Check a route name against the route grammar.

    Args:
        route: The candidate route name.
        system: Validate against the system route grammar, which
            requires a leading underscore.

    Returns:
        A rule-specific message for the first violation, or None.

    Examples:
        >>> validate_route_name("users/list")
        >>> validate_route_name("a")
        'Route should be at least two characters long'
        >>> validate_route_name("_routes", system=True)
    """
    if not isinstance(route, str) or not route:
        return "Route is required"

    if system:
        if not SYSTEM_ROUTE_PATTERN.fullmatch(route):
            if len(route) < 3:
                return "System route should be at least three characters long"
            if route[0] != "_":
                return "System route should start with an underscore"
            if not _ALPHANUMERIC.fullmatch(route[-1]):
                return "System route should end with a letter or a number"
            return (
                "System route should contain only letters, numbers, "
                "dashes, underscores, and forward slashes"
            )
    elif not ROUTE_PATTERN.fullmatch(route):
        if len(route) < 2:
            return "Route should be at least two characters long"
        if not _LETTER.fullmatch(route[0]):
            return "Route should start with a letter"
        if not _ALPHANUMERIC.fullmatch(route[-1]):
            return "Route should end with a letter or a number"
        return "Route should contain only letters, numbers, dashes, underscores, and forward slashes"

    for pattern, message in _SEGMENT_RULES:
        if pattern.search(route):
            return message

    return None


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def validate_batch_shape(batch: Any) -> str | None:
    """Check the structure of an inbound batch.

    The first violation found terminates validation for the whole batch.

    Args:
        batch: The decoded request body, expected to be a list of
            ``[id, route, body?, selector-or-headers?]`` items.

    Returns:
        A message describing the violation, or None when the batch is
        well formed.
    """
    if not _is_sequence(batch):
        return "Request should be an array"

    seen: set[str] = set()
    for item in batch:
        if not _is_sequence(item):
            return "Request item should be an array"
        if len(item) > 4:
            return "Request item should have at most four elements"

        request_id = item[0] if len(item) > 0 else None
        if not isinstance(request_id, str) or not request_id:
            return "Request item should have an ID"

        route = item[1] if len(item) > 1 else None
        if not isinstance(route, str) or not route:
            return "Request items should have a route"
        route_error = validate_route_name(route, system=route.startswith("_"))
        if route_error:
            return route_error

        body = item[2] if len(item) > 2 else None
        if body is not None and not isinstance(body, Mapping):
            return "Request item body should be an object"

        extra = item[3] if len(item) > 3 else None
        if extra is not None:
            if isinstance(extra, Mapping):
                selector = extra.get(SELECTOR_HEADER)
                if selector is not None and not _is_sequence(selector):
                    return "Request item selector should be an array"
            elif not _is_sequence(extra):
                return "Request item headers should be an object or selector an array"

        if request_id in seen:
            return "Request items should have unique IDs"
        seen.add(request_id)

    return None


def validate_router_options(options: Any) -> str | None:
    """Check the shape of router construction options.

    Args:
        options: Mapping with any of ``timeout`` (positive int
            milliseconds), ``introspection`` (bool) and ``environment``
            (str).

    Returns:
        A message describing the first invalid option, or None.
    """
    if not isinstance(options, Mapping):
        return "Options should be an object"

    for key in options:
        if key not in ROUTER_OPTIONS:
            return f"Unknown router option: {key}"

    timeout = options.get("timeout")
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0
    ):
        return "Timeout should be a positive int"

    introspection = options.get("introspection")
    if introspection is not None and not isinstance(introspection, bool):
        return "Introspection should be True or False"

    environment = options.get("environment")
    if environment is not None and not isinstance(environment, str):
        return "Environment should be a str"

    return None
