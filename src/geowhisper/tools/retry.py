"""
Retry helpers for store reads.

Only reads go through :func:`retry_read`. Writes (tower creation, member
updates, feed appends) are never retried blindly: repeating a find-or-create
after an ambiguous failure can leave duplicate towers behind.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from ..errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKOFF_BASE = 2
BACKOFF_MAX = 8.0


def exponential_backoff_with_jitter(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = BACKOFF_MAX,
) -> float:
    """
    Calculate backoff time with exponential growth and jitter.

    Formula: min(base_delay * (BACKOFF_BASE^attempt + random(0,1)), max_delay)

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Scale of the first delay in seconds
        max_delay: Upper bound in seconds

    Returns:
        Sleep time in seconds
    """
    jitter = random.random()
    return min(base_delay * (BACKOFF_BASE ** attempt + jitter), max_delay)


def full_jitter_backoff(
    attempt: int,
    base_delay: float,
    max_delay: float = BACKOFF_MAX,
) -> float:
    """
    Uniform delay in ``[0, ceiling]`` where the ceiling grows like
    :func:`exponential_backoff_with_jitter`.

    Spreads writers that lost the same compare-and-set round across the whole
    interval instead of waking them together.
    """
    return random.uniform(0.0, exponential_backoff_with_jitter(attempt, base_delay, max_delay))


async def retry_read(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    description: str = "store read",
) -> T:
    """
    Run ``operation`` and retry it on :class:`TransientStoreError`.

    Any other exception propagates immediately. After ``attempts`` failures
    the last transient error is re-raised.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except TransientStoreError as exc:
            if attempt == attempts - 1:
                raise
            delay = exponential_backoff_with_jitter(attempt, base_delay, max_delay)
            logger.warning(
                "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                description, exc, delay, attempt + 1, attempts,
            )
            await asyncio.sleep(delay)
    raise RuntimeError(f"{description} failed after retries")  # pragma: no cover
