from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from api.utils.logger import configure_logging

logger = configure_logging()

T = TypeVar("T")


def default_should_retry(error: Exception, attempt: int) -> bool:
    """Retry 5xx and 429 responses and transport failures; everything else is final."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or 500 <= status < 600
    return isinstance(error, httpx.TransportError)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    should_retry: Callable[[Exception, int], bool] = default_should_retry,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Await fn(), retrying with exponential backoff (initial_delay * 2**attempt).
    The last error is re-raised once retries are exhausted.
    """
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            last_error = e
            if attempt == max_retries or not should_retry(e, attempt):
                raise
            delay = initial_delay * (2 ** attempt)
            if on_retry:
                on_retry(attempt + 1, e)
            logger.debug("retry attempt=%s/%s delay=%.2fs error=%s", attempt + 1, max_retries, delay, e)
            await asyncio.sleep(delay)
    raise last_error  # pragma: no cover
