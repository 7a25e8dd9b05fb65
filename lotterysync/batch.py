from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from .types import SettledResult

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 5

logger = logging.getLogger("lotterysync.batch")


async def run_batched(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[SettledResult[T]]:
    """Run task factories ``batch_size`` at a time with all-settled semantics.

    Results come back in task order. A failing task is reported as a rejected
    result and never stops its siblings or later windows; cancellation of the
    caller still propagates.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: List[SettledResult[T]] = []
    for start in range(0, len(tasks), batch_size):
        window = tasks[start:start + batch_size]
        outcomes = await asyncio.gather(*(task() for task in window), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                results.append(SettledResult(status="rejected", reason=outcome))
            else:
                results.append(SettledResult(status="fulfilled", value=outcome))
    rejected = sum(1 for r in results if not r.ok)
    if rejected:
        logger.debug("Batch finished with %d of %d tasks rejected", rejected, len(results))
    return results


def fulfilled_values(results: Sequence[SettledResult[T]]) -> List[T]:
    return [r.value for r in results if r.ok and r.value is not None]


def rejected_reasons(results: Sequence[SettledResult[T]]) -> List[Optional[BaseException]]:
    return [r.reason for r in results if not r.ok]
