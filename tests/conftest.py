"""Central test fixtures."""

from typing import Any

import pytest

from blest import Router, RouterSettings
from blest.client import Transport
from blest.errors import TransportError


class RecordingTransport(Transport):
    """Transport that records batches and echoes each call back.

    Every call resolves to ``{"route": route, "body": body}``. Batches
    whose index is listed in ``fail_on`` raise ``TransportError``.
    """

    def __init__(self, fail_on: set[int] | None = None) -> None:
        self.batches: list[list[list[Any]]] = []
        self.fail_on = fail_on or set()
        self.closed = False

    async def send(self, batch: list[list[Any]]) -> list[Any]:
        index = len(self.batches)
        self.batches.append(batch)
        if index in self.fail_on:
            raise TransportError("HTTP Error: 503 - Service Unavailable", status=503)
        return [[item[0], item[1], {"route": item[1], "body": item[2]}, None] for item in batch]

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> RouterSettings:
    """Router settings pinned to a development environment."""
    return RouterSettings(timeout=1000, environment="development")


@pytest.fixture
def router(settings: RouterSettings) -> Router:
    """Create a router with an ``echo`` route."""
    router = Router(settings=settings)

    @router.route("echo")
    def echo(body, context):
        return {"value": body.get("v")}

    return router


@pytest.fixture
def recording_transport() -> RecordingTransport:
    """Create a transport that records outbound batches."""
    return RecordingTransport()


@pytest.fixture
def transport_factory() -> type[RecordingTransport]:
    """Expose the recording transport class for tests needing options."""
    return RecordingTransport
