"""
Bounded exponential backoff for transient provider failures.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..core.config import settings
from ..core.errors import TransientProviderError
from ..core.logging import logger

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based): min(base * 2^attempt, max)."""
    return min(base_delay * (2 ** attempt), max_delay)


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (TransientProviderError,),
    operation: str = "operation"
) -> T:
    """Call ``func`` until it succeeds or ``max_retries`` retries are spent.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. The last retryable error is re-raised once retries run out.
    """
    max_retries = settings.classifier_max_retries if max_retries is None else max_retries
    base_delay = settings.retry_base_delay if base_delay is None else base_delay
    max_delay = settings.retry_max_delay if max_delay is None else max_delay

    attempt = 0
    while True:
        try:
            return await func()
        except retry_on as e:
            if attempt >= max_retries:
                logger.warning(f"{operation} failed after {attempt + 1} attempts: {e}")
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.info(f"{operation} attempt {attempt + 1} failed ({e}), retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
            attempt += 1
