"""
Retry with Exponential Backoff.
Used by the ledger client for read-only calls. Only TransportError is retried;
anything the service actually answered is final.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 0.5  # seconds
DEFAULT_MAX_DELAY = 8.0  # seconds
DEFAULT_JITTER_FACTOR = 0.25  # ±25% jitter


def calculate_backoff(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter_factor: float = DEFAULT_JITTER_FACTOR,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap
        jitter_factor: Random jitter range (0.25 = ±25%)
        rng: Optional Random instance for deterministic testing
    """
    delay = min(base_delay * (2**attempt), max_delay)

    if jitter_factor > 0:
        rng = rng or random
        jitter_range = delay * jitter_factor
        delay += rng.uniform(-jitter_range, jitter_range)

    return max(0.0, delay)


async def retry_reads(
    func: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter_factor: float = DEFAULT_JITTER_FACTOR,
) -> T:
    """
    Execute an idempotent async call, retrying on TransportError.

    Raises:
        The last TransportError once retries are exhausted, or any other
        exception immediately.
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except TransportError as e:
            if attempt >= max_retries:
                logger.error(f"Max retries ({max_retries}) exhausted: {e.message}")
                raise

            delay = calculate_backoff(attempt, base_delay, max_delay, jitter_factor)
            logger.info(
                f"Retry {attempt + 1}/{max_retries} after {delay:.1f}s: {e.message}"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic error")
