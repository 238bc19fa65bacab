"""Batch runner: sequential per-item processing with inter-batch pacing.

Items are split into consecutive chunks of batch_size. Within a chunk the
handler runs for one item at a time, so at most one Zoho request is in
flight. A failing item is recorded and never aborts its chunk or later
chunks. The pacing delay runs between chunks, not after the last one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog

from src.storesync.core.monitoring import sync_items_total
from src.storesync.zoho.schemas import ItemOutcome, SyncResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split items into consecutive slices of at most *size* elements."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [items[i : i + size] for i in range(0, len(items), size)]


async def process_in_batches(
    items: Sequence[T],
    batch_size: int,
    handler: Callable[[T], Awaitable[ItemOutcome]],
    inter_batch_delay_ms: int = 0,
    *,
    identify: Callable[[T], Any] = str,
    module: str = "sync",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SyncResult:
    """Run *handler* over *items* and accumulate a SyncResult.

    Args:
        items: Candidates, processed in the given order.
        batch_size: Maximum items per chunk.
        handler: Async per-item function returning the item's outcome. An
            outcome with status "error" and a raised exception both count
            as one failure.
        inter_batch_delay_ms: Pause between chunks.
        identify: Returns the local id used in error messages.
        module: Metric label for per-item outcomes.
        sleep: Injectable sleep for tests.
    """
    result = SyncResult()
    chunks = chunked(items, batch_size)

    position = 0
    for index, chunk in enumerate(chunks):
        for item in chunk:
            # Position in the candidate list until identify() succeeds
            local_id = str(position)
            position += 1
            try:
                local_id = str(identify(item))
                outcome = await handler(item)
            except Exception as exc:
                message = f"{module} {local_id}: {exc}"
                logger.warning(
                    "sync.item_failed",
                    module=module,
                    local_id=local_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                outcome = ItemOutcome(local_id=local_id, status="error", message=message)

            result.details.append(outcome)
            if outcome.status == "synced":
                result.synced += 1
            else:
                result.failed += 1
                result.errors.append(outcome.message or f"{module} {local_id}: failed")
            sync_items_total.labels(module=module, status=outcome.status).inc()

        if index < len(chunks) - 1 and inter_batch_delay_ms > 0:
            logger.debug("sync.batch_pause", module=module, batch=index + 1, delay_ms=inter_batch_delay_ms)
            await sleep(inter_batch_delay_ms / 1000)

    return result
