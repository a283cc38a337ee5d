"""Recursive field projection of call results.

A selector is a list whose entries are either a field name (keep that
key) or a ``[field, nested_selector]`` pair (recurse into a mapping or
into every mapping of a list). Projecting twice with the same selector
gives the same result as projecting once.

Examples:
    >>> user = {"id": 1, "name": "Ada", "posts": [{"id": 7, "title": "x"}]}
    >>> project(user, ["name", ["posts", ["title"]]])
    {'name': 'Ada', 'posts': [{'title': 'x'}]}
"""

from collections.abc import Mapping
from typing import Any


def project(obj: Any, selector: Any) -> Any:
    """Prune ``obj`` down to the shape described by ``selector``.

    Args:
        obj: The result mapping to project.
        selector: The field selector. Anything other than a list or
            tuple leaves ``obj`` untouched.

    Returns:
        A new mapping holding only the selected fields, or ``obj``
        itself when the selector is not a sequence. Fields absent from
        ``obj`` are skipped; nested projections that end up empty are
        omitted.
    """
    if not isinstance(selector, (list, tuple)):
        return obj
    if not isinstance(obj, Mapping):
        return {}

    projected: dict[str, Any] = {}
    for entry in selector:
        if isinstance(entry, str):
            if entry in obj:
                projected[entry] = obj[entry]
            continue

        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            continue
        name, nested_selector = entry
        if not isinstance(name, str) or name not in obj:
            continue

        value = obj[name]
        if isinstance(value, (list, tuple)):
            items = []
            for item in value:
                if not isinstance(item, Mapping):
                    continue
                nested = project(item, nested_selector)
                if nested:
                    items.append(nested)
            if items:
                projected[name] = items
        elif isinstance(value, Mapping):
            nested = project(value, nested_selector)
            if nested:
                projected[name] = nested

    return projected
