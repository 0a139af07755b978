"""Fan-out / fan-in helper for concurrent batches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from cloud_vault.results import BatchOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_batch(jobs: list[tuple[str, Awaitable[T]]]) -> tuple[dict[str, T], BatchOutcome]:
    """Run every job concurrently and wait until all of them have settled.

    A failing job never cancels its siblings. Members complete in no
    particular order; only the aggregate is returned.

    Args:
        jobs: ``(label, awaitable)`` pairs; labels must be unique.

    Returns:
        A tuple of (label -> value for the jobs that succeeded, outcome).
    """
    labels = [label for label, _ in jobs]
    settled = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)

    values: dict[str, T] = {}
    outcome = BatchOutcome()
    for label, result in zip(labels, settled, strict=True):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.info("[run_batch] member failed; label:%s;error:%s", label, result)
            outcome.failed[label] = result
        else:
            values[label] = result
            outcome.succeeded.append(label)
    return values, outcome
