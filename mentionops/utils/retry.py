from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, interval: float = 1.0, growth: float = 1.5, jitter: float = 0.0
) -> float:
    """Compute exponential backoff ``interval * growth**attempt`` with jitter."""
    delay = interval * growth**attempt
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


async def sleep_backoff(
    attempt: int, interval: float = 1.0, growth: float = 1.5, jitter: float = 0.0
) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt, interval=interval, growth=growth, jitter=jitter)
    await asyncio.sleep(delay)
