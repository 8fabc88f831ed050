from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 5
MAX_CONCURRENCY = 10


def clamp_concurrency(value: int) -> int:
    """Keep a requested fan-out width within ``1..MAX_CONCURRENCY``."""
    return max(1, min(int(value), MAX_CONCURRENCY))


async def run_batch(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> list[R]:
    """Run `worker` over `items` with a bounded number of in-flight calls.

    Results come back in input order once every item has finished. A worker
    that raises propagates, so workers are expected to catch their own
    per-item failures and encode them in the result.

    Args:
        items (Iterable[T]): the work items
        worker (Callable[[T], Awaitable[R]]): coroutine function applied to each item
        concurrency (int): maximum number of concurrently running workers

    Returns:
        list[R]: one result per item, in the order of `items`
    """
    limiter = asyncio.Semaphore(clamp_concurrency(concurrency))

    async def limited(item: T) -> R:
        async with limiter:
            return await worker(item)

    return list(await asyncio.gather(*(limited(item) for item in items)))
