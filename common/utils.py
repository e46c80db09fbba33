"""
common.utils

Fan-out helpers for the reconciliation stages.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Hashable, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

log = logging.getLogger(__name__)


async def fan_out(
    items: Sequence[T],
    task_factory: Callable[[T], Awaitable[Optional[R]]],
    *,
    concurrency: Optional[int] = None,
    label: str = "task",
) -> List[R]:
    """
    Run task_factory(item) for every item and join on all of them.

    Width is unbounded when concurrency is None, otherwise at most
    `concurrency` tasks are in flight. Results come back in input order.
    A task that raises or returns None is dropped; failures are logged,
    never propagated.
    """
    sem = asyncio.Semaphore(concurrency) if concurrency else None

    async def run_one(item: T) -> Optional[R]:
        if sem is None:
            return await task_factory(item)
        async with sem:
            return await task_factory(item)

    tasks = [asyncio.create_task(run_one(item)) for item in items]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    out: List[R] = []
    for item, res in zip(items, results):
        if isinstance(res, BaseException):
            log.warning("%s failed for %r: %s: %s", label, item, type(res).__name__, res)
            continue
        if res is None:
            continue
        out.append(res)
    return out


def unique(values: Iterable[T], key: Callable[[T], Hashable] = lambda v: v) -> List[T]:
    """Drop repeats, keeping the first occurrence and the original order."""
    seen = set()
    out = []
    for v in values:
        k = key(v)
        if k in seen:
            continue
        seen.add(k)
        out.append(v)
    return out
