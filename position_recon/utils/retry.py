"""
Retry helper for exchange state lookups.

Lookups are also bounded by the analyzer's per-lookup timeout, so the
backoff here is kept short. A retry that outlives that timeout is
cancelled along with the lookup.
"""
import asyncio
import functools
import random
from typing import Callable, Optional, Tuple, Type

from position_recon.monitoring.logger import get_logger

logger = get_logger(__name__)

# Programming errors are never retried, whatever the caller asks for
NON_RETRYABLE = (ValueError, TypeError, KeyError, AttributeError)


def _is_retryable(exc: Exception, transient_errors: Optional[Tuple[Type[Exception], ...]]) -> bool:
    if isinstance(exc, NON_RETRYABLE):
        return False
    if transient_errors is None:
        return True
    return isinstance(exc, transient_errors)


def retry_on_transient_errors(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_backoff: float = 5.0,
    transient_errors: Optional[Tuple[Type[Exception], ...]] = None,
):
    """
    Retry an async call on transient errors with exponential backoff and jitter.

    Args:
        max_retries: Retries after the first call (total calls = max_retries + 1)
        base_delay: First wait in seconds
        max_backoff: Cap on a single wait
        transient_errors: Exception types worth retrying. None means any
                          exception outside NON_RETRYABLE.
    """
    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            delay = base_delay
            for attempt in range(1, max_retries + 2):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not _is_retryable(e, transient_errors):
                        raise
                    if attempt > max_retries:
                        logger.warning(
                            "LOOKUP_RETRIES_EXHAUSTED",
                            operation=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise
                    step = min(delay, max_backoff)
                    wait = step + random.uniform(0, step / 4)
                    logger.info(
                        "LOOKUP_RETRY",
                        operation=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        wait_seconds=round(wait, 3),
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(wait)
                    delay *= 2

        return wrapper
    return decorator
