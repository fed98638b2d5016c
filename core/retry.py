import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry(fn: Callable[[], Awaitable[T]], attempts: int = 3, delay_ms: int = 1000) -> T:
    """Await ``fn()`` up to ``attempts`` times, doubling the wait after each failure.

    The last exception is re-raised once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt == attempts:
                raise
            wait = delay_ms * (2 ** (attempt - 1)) / 1000
            logger.warning(f"Attempt {attempt}/{attempts} failed ({e}); retrying in {wait:.1f}s")
            await asyncio.sleep(wait)
