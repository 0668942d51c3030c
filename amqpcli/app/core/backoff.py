"""Backoff utilities.

Provides an async generator for exponential backoff strategies.
`exponential_backoff` yields the current delay for the caller to attempt an operation,
then sleeps before the next attempt. With max_attempts=1 it yields once and never sleeps,
which is how a single fail-fast connect is expressed.
"""
import asyncio
from typing import AsyncIterator


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[float]:
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt < max_attempts:
            await asyncio.sleep(delay)
            delay = min(delay * multiplier, max_delay)
