from __future__ import annotations

import asyncio
import random
from typing import Optional


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(
    attempt: int, base: float = 1.5, jitter: float = 0.5, retry_after: Optional[float] = None
) -> float:
    """Sleep before the next attempt and return the delay used.

    A server supplied ``retry_after`` takes precedence over the computed backoff.
    """
    delay = retry_after if retry_after is not None else compute_backoff(attempt, base, jitter)
    await asyncio.sleep(delay)
    return delay
