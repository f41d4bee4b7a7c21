"""
Retry Utilities

Exponential backoff retry for calls to external collaborators that sit
outside the webhook critical path (email provider, notification queue).
"""

import asyncio
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

from payment_webhooks.utils.exceptions import RetryableException
from payment_webhooks.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2
DEFAULT_BACKOFF_MAX = 32


def calculate_backoff(
    attempt: int,
    base: int = DEFAULT_BACKOFF_BASE,
    max_backoff: int = DEFAULT_BACKOFF_MAX,
) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Current retry attempt (0-indexed)
        base: Base for exponential calculation
        max_backoff: Maximum backoff time in seconds

    Returns:
        Backoff delay in seconds
    """
    return float(min(base**attempt, max_backoff))


def retry_async(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_base: int = DEFAULT_BACKOFF_BASE,
    backoff_max: int = DEFAULT_BACKOFF_MAX,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Callable:
    """
    Decorator for async functions with exponential backoff retry logic.

    Example:
        @retry_async(max_attempts=3, retryable_exceptions=(httpx.TransportError,))
        async def send():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception: Optional[Exception] = None

            for attempt in range(max_attempts):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(
                            f"Function {func.__name__} succeeded after {attempt} retries"
                        )
                    return result

                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_attempts - 1:
                        backoff_time = calculate_backoff(
                            attempt, backoff_base, backoff_max
                        )
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {e}. "
                            f"Retrying in {backoff_time}s...",
                            extra={
                                "function": func.__name__,
                                "attempt": attempt + 1,
                                "max_attempts": max_attempts,
                                "backoff_time": backoff_time,
                                "error": str(e),
                            },
                        )
                        if on_retry:
                            on_retry(e, attempt)

                        await asyncio.sleep(backoff_time)
                    else:
                        logger.error(
                            f"All {max_attempts} attempts failed for {func.__name__}",
                            extra={
                                "function": func.__name__,
                                "max_attempts": max_attempts,
                                "error": str(e),
                            },
                        )

            if isinstance(last_exception, RetryableException):
                last_exception.details["retry_count"] = max_attempts
            raise last_exception

        return wrapper

    return decorator
