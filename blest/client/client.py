"""Batching client: many ``request()`` calls, one outbound batch.

Calls are queued and a debounce timer is armed (and refreshed) on every
call. When it fires, the queue is drained in FIFO order into chunks of
at most ``max_batch_size`` calls, each sent as one batch through the
transport. Results are matched back to their waiters by call id.
"""

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from ulid import ULID

from ..config import ClientSettings
from ..errors import BlestError, TransportError
from ..validation import SELECTOR_HEADER
from .transport import HttpTransport, Transport

LOGGER = logging.getLogger(__name__)


def _retrieve_exception(waiter: "asyncio.Future[Any]") -> None:
    # Fire-and-forget calls are allowed, so an unawaited failure is not reported
    if not waiter.cancelled():
        waiter.exception()


@dataclass(slots=True)
class PendingCall:
    """A call waiting for its result."""

    id: str
    route: str
    body: dict[str, Any] | None
    headers: dict[str, Any] | None
    waiter: asyncio.Future[dict[str, Any]]

    def to_wire(self) -> list[Any]:
        return [self.id, self.route, self.body, self.headers]


class Client:
    """Client that multiplexes independent calls into batched requests.

    Args:
        endpoint: URL batches are posted to by the default HTTP transport.
        max_batch_size: Maximum number of calls per outbound batch.
        buffer_delay: Debounce window in milliseconds.
        headers: Extra HTTP headers for the default transport.
        transport: Transport to send batches through. Defaults to an
            ``HttpTransport`` for ``endpoint``.
        settings: Base settings. Explicit keyword arguments override it.

    Examples:
        >>> async with Client("https://api.example.com/rpc") as client:
        ...     hello = client.request("hello")
        ...     greet = client.request("greet", {"name": "Ada"})
        ...     # Both calls travel in the same batch
        ...     print(await hello, await greet)

        Projecting the result:

        >>> user = await client.request(
        ...     "users/get", {"id": 1}, selector=["name", ["posts", ["title"]]]
        ... )
    """

    def __init__(
        self,
        endpoint: str | None = None,
        *,
        max_batch_size: int | None = None,
        buffer_delay: int | None = None,
        headers: Mapping[str, str] | None = None,
        transport: Transport | None = None,
        settings: ClientSettings | None = None,
    ):
        overrides: dict[str, Any] = {
            key: value
            for key, value in (
                ("endpoint", endpoint),
                ("max_batch_size", max_batch_size),
                ("buffer_delay", buffer_delay),
                ("headers", dict(headers) if headers is not None else None),
            )
            if value is not None
        }
        base = settings or ClientSettings()
        self.settings = (
            ClientSettings.model_validate({**base.model_dump(), **overrides}) if overrides else base
        )
        self.transport = transport or HttpTransport(
            self.settings.endpoint,
            headers=self.settings.headers,
            timeout=self.settings.request_timeout,
        )

        self._lock = threading.Lock()
        self._pending: dict[str, PendingCall] = {}
        self._queue: deque[PendingCall] = deque()
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def endpoint(self) -> str:
        return self.settings.endpoint

    @property
    def max_batch_size(self) -> int:
        return self.settings.max_batch_size

    @property
    def buffer_delay(self) -> int:
        return self.settings.buffer_delay

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def request(
        self,
        route: str,
        body: Mapping[str, Any] | None = None,
        headers: Mapping[str, Any] | None = None,
        selector: list[Any] | None = None,
    ) -> "asyncio.Future[dict[str, Any]]":
        """Queue a call and return its waiter without blocking.

        Must be called from a running event loop.

        Args:
            route: Route name to call.
            body: Optional call body.
            headers: Optional per-call headers, exposed to handlers as
                ``context["headers"]``.
            selector: Optional field selector applied to the result on
                the server.

        Returns:
            A future resolved with the call's result, or failed with
            ``BlestError`` (the call failed) or ``TransportError`` (its
            batch could not be delivered). The future need not be awaited:
            the failure of a call nobody awaits is dropped silently.
        """
        loop = asyncio.get_running_loop()
        call_headers = dict(headers) if headers is not None else None
        if selector is not None:
            call_headers = {**(call_headers or {}), SELECTOR_HEADER: list(selector)}

        call = PendingCall(
            id=str(ULID()),
            route=route,
            body=dict(body) if body is not None else None,
            headers=call_headers,
            waiter=loop.create_future(),
        )
        call.waiter.add_done_callback(_retrieve_exception)
        with self._lock:
            self._pending[call.id] = call
            self._queue.append(call)

        self._arm_timer(loop)
        return call.waiter

    def _arm_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.buffer_delay / 1000, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _next_chunk(self) -> list[PendingCall]:
        with self._lock:
            size = min(self.max_batch_size, len(self._queue))
            return [self._queue.popleft() for _ in range(size)]

    async def flush(self) -> None:
        """Send every queued call now, one batch per chunk."""
        while chunk := self._next_chunk():
            await self._send(chunk)

    async def _send(self, chunk: list[PendingCall]) -> None:
        try:
            results = await self.transport.send([call.to_wire() for call in chunk])
        except TransportError as exc:
            LOGGER.warning(
                "Batch of %d calls failed: %s",
                len(chunk),
                exc.message,
                extra={"status": exc.status},
            )
            self._reject(chunk, exc)
            return
        except Exception as exc:
            LOGGER.error(
                "Transport raised an unexpected error for a batch of %d calls",
                len(chunk),
                exc_info=exc,
            )
            self._reject(chunk, TransportError(f"Transport Error: {exc}", status=500))
            return

        self._resolve(results)
        # Whatever is still pending from this chunk got no result
        self._reject(chunk, TransportError("No result received for call", status=502))

    def _pop(self, call_id: Any) -> PendingCall | None:
        with self._lock:
            return self._pending.pop(call_id, None)

    def _resolve(self, results: list[Any]) -> None:
        for item in results:
            if not isinstance(item, (list, tuple)) or not item or not isinstance(item[0], str):
                continue
            call = self._pop(item[0])
            if call is None:
                LOGGER.debug("Dropping result for unknown call", extra={"call_id": item[0]})
                continue
            if call.waiter.done():
                continue

            result = item[2] if len(item) > 2 else None
            error = item[3] if len(item) > 3 else None
            if error is not None:
                call.waiter.set_exception(BlestError.from_payload(error))
            else:
                call.waiter.set_result(result)

    def _reject(self, chunk: list[PendingCall], error: TransportError) -> None:
        for call in chunk:
            if self._pop(call.id) is None or call.waiter.done():
                continue
            call.waiter.set_exception(
                TransportError(error.message, status=error.status, code=error.code)
            )

    async def aclose(self) -> None:
        """Send any queued calls, then close the transport."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self.flush()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.transport.aclose()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()
