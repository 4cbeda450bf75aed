"""Shared concurrency primitives for bounded inference fan-out.

Embedding calls for the chunks of one document may run in parallel, but
the inference provider must never see an unbounded burst.  Two helpers
are exposed:

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather``
   that wraps each awaitable in a semaphore acquire/release.

2. **with_timeout** -- awaits a coroutine under ``asyncio.wait_for`` and
   converts a timeout into the caller's domain error, so every inference
   call has a bounded wait.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from docvault.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    limit: int = 4,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most *limit* in flight.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional shared semaphore.  When omitted a fresh one sized to
        *limit* is created for this call.
    limit:
        Concurrency bound used when no semaphore is supplied.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def with_timeout(
    coro: Awaitable[_T],
    timeout: float,
    on_timeout: Callable[[], BaseException],
) -> _T:
    """Await *coro* for at most *timeout* seconds.

    A timeout raises the exception built by *on_timeout*, chained from the
    original :class:`asyncio.TimeoutError`.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as exc:
        error = on_timeout()
        _logger.warning("inference_call_timed_out", timeout=timeout, error=str(error))
        raise error from exc
