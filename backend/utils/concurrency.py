"""Bounded fan-out helpers for upstream calls.

Two shapes are used across the leaderboard pipeline:

- ``gather_bounded`` keeps at most ``concurrency`` operations in flight at any
  moment (semaphore pool). Used by the batch points proxy.
- ``gather_in_batches`` runs fixed-size batches with a hard barrier between
  them and an optional pause, so peak in-flight requests equal the batch size
  and bursts are spaced out. Used by the refresh and repair steps.

Both start every item's operation exactly once and return only after every
operation has settled. Results come back in input order. If any operation
raised, the first failure (in input order) is re-raised after the rest have
finished, so no task is left running behind the caller's back.
"""

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def _raise_first_failure(results: list) -> None:
    for result in results:
        if isinstance(result, BaseException):
            raise result


async def gather_bounded(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")
    if not items:
        return []

    semaphore = asyncio.Semaphore(concurrency)

    async def run(item: T) -> R:
        async with semaphore:
            return await operation(item)

    results = await asyncio.gather(*[run(item) for item in items], return_exceptions=True)
    _raise_first_failure(results)
    return list(results)


async def gather_in_batches(
    items: Sequence[T],
    operation: Callable[[T], Awaitable[R]],
    batch_size: int,
    pause_seconds: float = 0.0,
) -> list[R]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    results: list = []
    for start in range(0, len(items), batch_size):
        batch = items[start : start + batch_size]
        results.extend(
            await asyncio.gather(*[operation(item) for item in batch], return_exceptions=True)
        )
        if pause_seconds > 0 and start + batch_size < len(items):
            await asyncio.sleep(pause_seconds)

    _raise_first_failure(results)
    return results
