"""Concurrency control utilities for balance fetches and commits.

Provides in-flight coalescing: concurrent callers that share a key await
one task instead of each issuing their own network call.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Coalesce concurrent calls that share a key into one in-flight task.

    Example:
        flight = SingleFlight("balances")
        # Both callers share one fetch
        a, b = await asyncio.gather(
            flight.do("all", fetch_balances),
            flight.do("all", fetch_balances),
        )

    The shared task is shielded: a cancelled caller stops waiting, but the
    work keeps running for the other callers and still records its result.
    """

    def __init__(self, name: str = "singleflight"):
        self.name = name
        self._inflight: dict[Hashable, asyncio.Future] = {}

    async def do(self, key: Hashable, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` unless a call for ``key`` is already in flight, then await it."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(func())
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._forget(k, done))
            logger.debug("%s: started %r", self.name, key)
        else:
            logger.debug("%s: joined in-flight %r", self.name, key)
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    def _forget(self, key: Hashable, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("%s: %r finished with %r", self.name, key, task.exception())

    def clear(self) -> None:
        """Forget all in-flight calls (useful for testing)."""
        self._inflight.clear()
