import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    label: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` are used up.

    The wait between attempts doubles each time (``base_delay``, ``2*base_delay``,
    ...). The last exception is re-raised unchanged. ``operation`` must be safe
    to repeat; nothing here deduplicates its side effects.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            logger.warning(
                "%s failed (attempt %d/%d): %s: %s",
                label,
                attempt + 1,
                max_attempts,
                type(exc).__name__,
                exc,
            )
            if attempt + 1 >= max_attempts:
                raise
            await asyncio.sleep(base_delay * (2 ** attempt))
