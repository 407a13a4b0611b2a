"""Bounded retry loop with exponential backoff."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from carousel_relay.utils.errors import RetryError

logger = logging.getLogger(__name__)
T = TypeVar("T")

TRANSIENT_ERROR_SIGNATURES = (
    "network error",
    "timeout",
    "temporary failure",
    "rate limit",
    "server error",
    "502",
    "503",
    "504",
)


def is_transient_error(error: BaseException) -> bool:
    """Check an error message against the transient signature allow-list."""
    message = str(error).lower()
    return any(signature in message for signature in TRANSIENT_ERROR_SIGNATURES)


async def retry_with_backoff(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    should_retry: Callable[[Exception], bool] = is_transient_error,
    **kwargs: Any,
) -> T:
    """
    Run an async operation, retrying it on retryable failures.

    The operation runs at most ``max_retries + 1`` times. After failed
    attempt ``k`` (zero based) the loop sleeps ``base_delay * 2**k``
    seconds before starting over.

    Args:
        operation: Coroutine function to call
        max_retries: Number of retries after the first attempt
        base_delay: Base delay in seconds (doubles each retry)
        should_retry: Predicate deciding whether a failure is retryable

    Returns:
        The operation's result

    Raises:
        RetryError: When the failure is not retryable or retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return await operation(*args, **kwargs)
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                if attempt >= max_retries:
                    logger.error(f"All {attempt + 1} attempts failed: {e}")
                raise RetryError(attempt + 1, e) from e

            delay = base_delay * (2**attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}. "
                f"Retrying in {delay}s..."
            )
            await asyncio.sleep(delay)
            attempt += 1
