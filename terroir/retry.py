"""
Retry logic with exponential backoff for transient database failures.

The merge wrapper re-runs its whole body through ``exponential_backoff`` so
every attempt starts from a fresh session and freshly loaded rows.
"""

import time
import functools
from typing import Callable, Type, Tuple, Optional

from sqlalchemy.exc import DBAPIError, OperationalError


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        sleep: Sleep function, swapped out in tests

    Example:
        @exponential_backoff(max_retries=3, exceptions=(TransientStoreError,))
        def run_merge():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {e}",
                            attempts=max_retries + 1,
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    if current_delay > 0:
                        sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


TRANSIENT_KEYWORDS = (
    "database is locked",
    "database table is locked",
    "lock wait timeout",
    "lock timeout",
    "deadlock",
    "could not serialize",
    "connection reset",
    "connection refused",
    "server closed the connection",
    "lost connection",
    "timeout",
)


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if a store error is likely transient and worth a retry.

    Args:
        exception: Exception to check

    Returns:
        True for lock contention and dropped connections
    """
    if isinstance(exception, DBAPIError) and exception.connection_invalidated:
        return True
    if not isinstance(exception, OperationalError):
        return False

    error_str = str(exception).lower()
    return any(keyword in error_str for keyword in TRANSIENT_KEYWORDS)
