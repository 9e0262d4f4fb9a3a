"""
Fan-out/fan-in helpers used by every parallel pipeline stage.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def with_timeout(awaitable: Awaitable[T], timeout: float | None) -> T:
    """
    Await ``awaitable`` and raise :class:`asyncio.TimeoutError` after ``timeout`` seconds.
    """
    if timeout is None or timeout <= 0:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)


async def settle_all(
    awaitables: Iterable[Awaitable[T]],
    *,
    timeout: float | None = None,
    limit: int | None = None,
) -> list[T | BaseException]:
    """
    Run every awaitable concurrently and wait until all of them have settled.

    The returned list is positionally aligned with the input. Each slot holds
    either the awaitable's result or the exception it raised; a failure never
    cancels the rest of the batch.

    Parameters
    ----------
    awaitables:
        Coroutines or futures to run.
    timeout:
        Optional per-call timeout in seconds.
    limit:
        Optional cap on how many calls are in flight at once.
    """
    semaphore = asyncio.Semaphore(limit) if limit and limit > 0 else None

    async def _run(awaitable: Awaitable[T]) -> T:
        if semaphore is None:
            return await with_timeout(awaitable, timeout)
        async with semaphore:
            return await with_timeout(awaitable, timeout)

    tasks = [_run(item) for item in awaitables]
    if not tasks:
        return []

    results: list[Any] = await asyncio.gather(*tasks, return_exceptions=True)
    failures = sum(1 for item in results if isinstance(item, BaseException))
    if failures:
        logger.debug("Batch settled with %d/%d failures.", failures, len(results))
    return results
