"""
Retry helpers for talking to measurement feeds.

The feed is an external store; its initialization and first full load
are retried with exponential backoff before the service gives up on
startup. Later incremental polls are not retried here: a failed tick is
logged and the next tick tries again.
"""
import logging
import functools
from typing import Callable, TypeVar

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class FeedUnavailableError(Exception):
    """Raised when a feed cannot be loaded after all retry attempts."""
    pass


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    exceptions: tuple = (Exception,),
):
    """
    Decorator for adding retry logic with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including the first)
        min_wait: Minimum wait time between attempts (seconds)
        max_wait: Maximum wait time between attempts (seconds)
        exceptions: Tuple of exception types to retry on

    Usage:
        @with_retry(max_attempts=3, min_wait=0.5)
        def load_everything():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return func(*args, **kwargs)

        return wrapper

    return decorator


def call_with_retry(
    func: Callable[[], T],
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    description: str = "feed call",
) -> T:
    """
    Call func with retries; wrap the final failure in FeedUnavailableError.

    Args:
        func: Zero-argument callable
        max_attempts: Maximum number of attempts
        min_wait: Minimum backoff (seconds)
        max_wait: Maximum backoff (seconds)
        description: Used in log and error messages
    """
    wrapped = with_retry(max_attempts=max_attempts, min_wait=min_wait, max_wait=max_wait)(func)
    try:
        return wrapped()
    except Exception as e:
        logger.error(f"{description} failed after {max_attempts} attempts: {e}")
        raise FeedUnavailableError(f"{description} failed: {e}") from e
