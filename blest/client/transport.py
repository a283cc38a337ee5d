"""Outbound transports for the batching client.

This module provides:
- Transport: Abstract interface for sending one batch and receiving its results
- HttpTransport: JSON over HTTP POST using httpx
- InMemoryTransport: Hands batches straight to a local ``Router``
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import TransportError

if TYPE_CHECKING:
    from ..routing import Router


class Transport(ABC):
    """Abstract interface for delivering an outbound batch.

    A transport sends exactly one batch per ``send`` call and returns
    the decoded list of result tuples. Any failure to deliver or decode
    must be raised as ``TransportError``; the client rejects every call
    of the batch with it.
    """

    @abstractmethod
    async def send(self, batch: list[list[Any]]) -> list[Any]:
        """Send a batch and return its result tuples.

        Args:
            batch: ``[id, route, body, headers]`` items.

        Returns:
            The decoded response, a list of ``[id, route, result, error]``.

        Raises:
            TransportError: If the batch could not be delivered or the
                response could not be decoded.
        """
        ...

    async def aclose(self) -> None:
        """Release any resources held by the transport."""
        pass


class HttpTransport(Transport):
    """Posts batches as JSON to an HTTP endpoint.

    Args:
        endpoint: URL to POST batches to.
        headers: Extra headers sent with every batch.
        timeout: Request timeout in seconds.
        client: Optional pre-configured ``httpx.AsyncClient``. When
            omitted, one is created lazily and closed by ``aclose``.

    Example:
        >>> transport = HttpTransport("https://api.example.com/rpc")
        >>> results = await transport.send([["a1", "hello", None, None]])
    """

    def __init__(
        self,
        endpoint: str,
        headers: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self.headers = {
            **dict(headers or {}),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def send(self, batch: list[list[Any]]) -> list[Any]:
        try:
            content = json.dumps(batch)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"Request should be valid JSON: {exc}", status=400) from exc

        try:
            response = await self.client.post(self.endpoint, content=content, headers=self.headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(f"HTTP Error: {exc}", status=503) from exc

        if response.is_error:
            raise TransportError(
                f"HTTP Error: {response.status_code} - {response.reason_phrase}",
                status=response.status_code,
            )

        try:
            results = response.json()
        except ValueError as exc:
            raise TransportError("Response should be valid JSON", status=502) from exc
        if not isinstance(results, list):
            raise TransportError("Response should be an array", status=502)
        return results

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class InMemoryTransport(Transport):
    """Delivers batches to a router in the same process.

    Useful for tests and for composing services without a network hop.
    A batch-level rejection from the router is raised as
    ``TransportError`` carrying the router's status.

    Args:
        router: The router that handles the batches.
        context: Base context passed to every batch.
    """

    def __init__(self, router: "Router", context: Mapping[str, Any] | None = None):
        self.router = router
        self.context = dict(context or {})
        self.batches: list[list[list[Any]]] = []

    async def send(self, batch: list[list[Any]]) -> list[Any]:
        self.batches.append(batch)
        results, error = await self.router.handle(batch, self.context)
        if error is not None:
            raise TransportError(
                f"HTTP Error: {error['status']} - {error['message']}", status=error["status"]
            )
        return results or []
