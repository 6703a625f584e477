"""Bounded-concurrency batch executor shared by the network-bound stages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

logger = logging.getLogger("pipelines.signals.batching")

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

BatchProgress = Callable[[int, int], None]


async def run_in_batches(
    items: Sequence[ItemT],
    worker: Callable[[ItemT], Awaitable[ResultT]],
    *,
    batch_size: int,
    delay_seconds: float = 0.0,
    on_progress: BatchProgress | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[ResultT]:
    """Run ``worker`` over ``items`` in fixed-size concurrent batches.

    Results keep input order. The worker owns its own error handling: an exception escaping
    it aborts the whole call. ``delay_seconds`` is slept between batches, not after the last.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    total = len(items)
    results: list[ResultT] = []
    for start in range(0, total, batch_size):
        batch = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch)))
        if on_progress is not None:
            notify_progress(on_progress, len(results), total)
        if delay_seconds > 0 and start + batch_size < total:
            await sleep(delay_seconds)
    return results


def notify_progress(callback: BatchProgress, completed: int, total: int) -> None:
    """Invoke a progress callback; a failing callback never breaks the pipeline."""
    try:
        callback(completed, total)
    except Exception:  # noqa: BLE001 - callbacks are caller-owned
        logger.warning(
            "signal_pipeline.progress_callback_failed",
            extra={"completed": completed, "total": total},
            exc_info=True,
        )
