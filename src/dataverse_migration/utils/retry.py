"""Retry logic and decorators using tenacity.

This module provides retry decorators configured for Dataverse Web API calls,
with exponential backoff, jitter, and honoring of the Retry-After header that
service protection limits send with 429 responses.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from dataverse_migration.client.exceptions import NetworkError, RateLimitError, ServerError
from dataverse_migration.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, ServerError, RateLimitError)


class wait_retry_after:
    """Wait strategy that prefers the server's Retry-After hint.

    Falls back to the wrapped strategy when the last error carries no hint.
    The hint is capped at ``max_wait`` seconds.
    """

    def __init__(self, fallback: Callable[[RetryCallState], float], max_wait: float):
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            error = outcome.exception()
            if isinstance(error, RateLimitError) and error.retry_after:
                return float(min(error.retry_after, self.max_wait))
        return self.fallback(retry_state)


def retry_with_backoff(
    max_attempts: int = 5,
    min_wait: int = 2,
    max_wait: int = 60,
    retry_on_exceptions: tuple = TRANSIENT_ERRORS,
) -> Callable[[F], F]:
    """General retry decorator with exponential backoff and jitter.

    Handles network errors, server errors, and rate limits.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        retry_on_exceptions: Tuple of exception types to retry on

    Returns:
        Decorated function with retry logic
    """
    wait = wait_retry_after(
        wait_random_exponential(multiplier=1, min=min_wait, max=max_wait), max_wait
    )

    def decorator(func: F) -> F:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt_obj in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait,
                retry=retry_if_exception_type(retry_on_exceptions),
                reraise=True,
            ):
                with attempt_obj:
                    attempt = attempt_obj.retry_state.attempt_number
                    if attempt > 1:
                        logger.info(
                            "retry_attempt",
                            function=func.__name__,
                            attempt=attempt,
                            max_attempts=max_attempts,
                        )
                    return await func(*args, **kwargs)

        return async_wrapper  # type: ignore

    return decorator


# Pre-configured decorators for common use cases
retry_api_call = retry_with_backoff(max_attempts=5, min_wait=2, max_wait=60)
retry_api_call_short = retry_with_backoff(max_attempts=3, min_wait=1, max_wait=10)
