"""Bounded-concurrency primitives shared by ingestion and the LLM wrappers.

Two patterns are exposed:

1. **ConcurrencyLimiter** -- an asyncio semaphore wrapper that caps how
   many calls run at once.  Waiters are released in FIFO order, and a
   ``max_concurrency`` of zero or less disables the cap entirely.

2. **throttled_gather** -- a drop-in replacement for ``asyncio.gather``
   that runs each awaitable through a limiter and returns results in input
   order.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

_T = TypeVar("_T")


class ConcurrencyLimiter:
    """Cap the number of coroutines executing concurrently.

    Parameters
    ----------
    max_concurrency:
        Maximum number of concurrently running calls.  Values ``<= 0``
        mean "unlimited".
    """

    def __init__(self, max_concurrency: int) -> None:
        self._max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency > 0 else None
        self._active = 0

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def active(self) -> int:
        """Number of calls currently holding a slot."""
        return self._active

    async def run(self, fn: Callable[..., Awaitable[_T]], *args: Any, **kwargs: Any) -> _T:
        """Await ``fn(*args, **kwargs)`` once a slot is free."""
        if self._semaphore is None:
            return await self._tracked(fn, *args, **kwargs)
        async with self._semaphore:
            return await self._tracked(fn, *args, **kwargs)

    async def _tracked(self, fn: Callable[..., Awaitable[_T]], *args: Any, **kwargs: Any) -> _T:
        self._active += 1
        try:
            return await fn(*args, **kwargs)
        finally:
            self._active -= 1


async def throttled_gather(
    coros: list[Awaitable[_T]],
    limiter: ConcurrencyLimiter | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently through *limiter*.

    Parameters
    ----------
    coros:
        Awaitable objects to execute.
    limiter:
        Limiter bounding concurrency.  ``None`` runs everything at once.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if limiter is None:
        limiter = ConcurrencyLimiter(0)

    async def _await(coro: Awaitable[_T]) -> _T:
        return await coro

    tasks = [limiter.run(_await, c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
