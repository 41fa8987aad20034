"""
Retry helpers for the crawl planner.

Pattern-store writes share one embedded database across many concurrent
jobs; a write that loses a lock race is retried briefly before the caller
gives up and logs the failure.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from tenacity import (
    retry as tenacity_retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log
)

import config

logger = logging.getLogger(__name__)

# Type variable for generic function return type
T = TypeVar('T')

LOCK_MESSAGES = ("database is locked", "database table is locked", "deadlock detected")

def is_lock_contention(exc: BaseException) -> bool:
    """True for operational errors caused by a competing writer."""
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(fragment in message for fragment in LOCK_MESSAGES)

def retry_on_database_lock(
    max_attempts: int = None,
    min_wait: float = 0.05,
    max_wait: float = 1.0
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator that retries a database write when it hits lock contention.

    Args:
        max_attempts: Maximum number of attempts (defaults to DATABASE_WRITE_RETRIES)
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)

    Returns:
        Decorated function with retry logic
    """
    return tenacity_retry(
        stop=stop_after_attempt(max_attempts or config.DATABASE_WRITE_RETRIES),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_lock_contention),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
