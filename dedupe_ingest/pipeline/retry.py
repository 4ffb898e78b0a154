"""Retry helpers shared by sink writers and the append coordinator."""

from __future__ import annotations

import logging
import random
import time
from functools import wraps
from typing import Callable, Tuple, Type

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential delay with up to one second of jitter, capped at `max_delay`."""
    return min(base_delay * (2 ** attempt) + random.uniform(0, 1), max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
):
    """Decorator for retry logic with exponential backoff.

    Only exceptions matching `retry_on` are retried; anything else propagates on
    the first occurrence. After `max_retries` attempts the last error is re-raised.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt == max_retries - 1:
                        logger.error(f"{func.__name__} failed after {max_retries} attempts: {e}")
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay)
                    logger.warning(f"{func.__name__} attempt {attempt + 1} failed: {e}. Retrying in {delay:.1f}s")
                    sleep(delay)

        return wrapper
    return decorator
