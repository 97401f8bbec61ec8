"""Bounded scatter-gather for bulk operations.

``run_parallel()`` starts one task per item, caps the number in flight with a
semaphore and joins on all of them. Results come back in input order no
matter which task finishes first; a failing item is returned as its exception
instance and never cancels or affects its siblings.

With concurrency=1, behavior is identical to a sequential for-loop.
"""
import asyncio
import logging
from typing import TypeVar, Sequence, Callable, Awaitable

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_parallel(
    items: Sequence[T],
    worker: Callable[[int, T], Awaitable[R]],
    *,
    concurrency: int | None = None,
    progress_callback: Callable[[int, int, str], Awaitable[None]] | None = None,
) -> list[R | Exception]:
    """Run worker(index, item) for each item with bounded concurrency.

    Args:
        items: Sequence of items to process.
        worker: async (index, item) -> result. Index is 0-based.
        concurrency: Max in-flight workers. None = one per item (the batch
            cap of the caller is the bound). 1 = sequential.
        progress_callback: async (completed, total, message) -> None.

    Returns:
        List of results in input order. Failed items are Exception instances.
    """
    total = len(items)
    if total == 0:
        return []

    limit = total if concurrency is None else max(1, concurrency)
    results: list[R | Exception] = [None] * total  # type: ignore[list-item]
    completed_count = 0
    ok_count = 0
    error_count = 0
    semaphore = asyncio.Semaphore(limit)

    async def _run_one(index: int, item: T):
        nonlocal completed_count, ok_count, error_count

        async with semaphore:
            try:
                results[index] = await worker(index, item)
                ok_count += 1
            except Exception as exc:
                logger.debug("Item %d failed: %s", index, exc)
                results[index] = exc
                error_count += 1

            completed_count += 1
            if progress_callback:
                try:
                    await progress_callback(
                        completed_count, total,
                        f"Item {completed_count}/{total} ({ok_count} ok, {error_count} errors)",
                    )
                except Exception as e:
                    logger.warning(f"Progress callback failed: {e}")

    if limit <= 1:
        for i, item in enumerate(items):
            await _run_one(i, item)
    else:
        tasks = [asyncio.create_task(_run_one(i, item)) for i, item in enumerate(items)]
        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    return results
