"""Fixed-width batch execution of independent async tasks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sage_debate.errors import DebateAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_batches(
    tasks: list[Callable[[], Awaitable[T]]],
    width: int,
) -> list[T]:
    """Run ``tasks`` in sequential batches of ``width``, preserving task order.

    Each batch is awaited to completion before the next one starts. A task
    failure never cancels its siblings; once the batch has settled the first
    DebateAborted is re-raised, and any other exception is re-raised as-is
    since task bodies are expected to report failures through their results.
    """
    if width < 1:
        raise ValueError(f"Batch width must be >= 1, got {width}")

    results: list[T] = []
    for start in range(0, len(tasks), width):
        batch = tasks[start:start + width]
        logger.debug("Running batch of %d task(s) starting at %d", len(batch), start)
        batch_results = await asyncio.gather(*(task() for task in batch), return_exceptions=True)

        aborts = [r for r in batch_results if isinstance(r, DebateAborted)]
        if aborts:
            raise aborts[0]
        for r in batch_results:
            if isinstance(r, BaseException):
                raise r
        results.extend(batch_results)  # type: ignore[arg-type]
    return results
