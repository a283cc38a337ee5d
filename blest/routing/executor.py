"""Worker threads for sync handlers.

Each ``Router`` owns a ``HandlerExecutor``. Sync handlers are submitted to
its thread pool and awaited from the event loop. A handler abandoned by a
timeout cannot be interrupted, so it keeps its worker thread until it
returns. When that happens the executor retires the pool: the abandoned
threads finish on the old pool and exit, while new calls go to a fresh
pool of ``max_workers`` threads. Abandoned work therefore never queues
up in front of later calls.

Calls already queued on a pool when it is retired still run there, once
one of its workers frees up or their own timeout expires.
"""

import asyncio
import concurrent.futures
import functools
import logging
import threading
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 32


class HandlerExecutor:
    """Runs sync handlers on a thread pool owned by a router.

    Args:
        max_workers: Number of worker threads per pool.

    Example:
        >>> executor = HandlerExecutor(max_workers=8)
        >>> result = await executor.run(handler, body, context)
        >>> executor.shutdown()
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self.max_workers = max_workers
        self._lock = threading.Lock()
        self._pool: concurrent.futures.ThreadPoolExecutor | None = None
        self._retired = 0

    @property
    def retired(self) -> int:
        """Number of pools retired because a handler was abandoned."""
        return self._retired

    def _current_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="blest-handler"
                )
            return self._pool

    def _retire(self, pool: concurrent.futures.ThreadPoolExecutor) -> None:
        with self._lock:
            if self._pool is not pool:
                return
            self._pool = None
            self._retired += 1
        pool.shutdown(wait=False)
        LOGGER.warning(
            "Retired handler pool holding abandoned work",
            extra={"max_workers": self.max_workers},
        )

    async def run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run ``func(*args)`` on a worker thread and await its result.

        Raises:
            Whatever ``func`` raises. Cancellation of the awaiting task
            (for example by a timeout) propagates as ``CancelledError``.
        """
        pool = self._current_pool()
        future = pool.submit(functools.partial(func, *args))
        try:
            return await asyncio.wrap_future(future)
        except asyncio.CancelledError:
            # A started handler cannot be cancelled and keeps its worker
            if not future.cancel() and future.running():
                self._retire(pool)
            raise

    def shutdown(self) -> None:
        """Stop accepting work. Running handlers finish in the background."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False)
