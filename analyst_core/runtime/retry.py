"""
Retry policy configuration and decorators.

Exponential backoff with jitter, used by the HTTP client for transient
status codes and, optionally, by the control loop around backend calls.
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from typing import Any, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel

from .errors import RetryableError

T = TypeVar("T")

RetryCallback = Callable[[int, RetryableError, float], None]


class RetryPolicy(BaseModel):
    """Configuration for retry behavior.

    The delay for attempt N is ``min(base_delay * exponential_base ** N, max_delay)``
    plus up to 25% jitter.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Initial delay in seconds between retries.
        max_delay: Maximum delay in seconds (caps backoff).
        exponential_base: Base for exponential backoff calculation.
        jitter: Whether to add random jitter to delays.
        retry_on_status: HTTP status codes that trigger retry.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on_status: tuple[int, ...] = (429, 502, 503, 504)

    model_config = {"frozen": True}

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt number (0-indexed)."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay += delay * 0.25 * random.random()
        return delay

    def should_retry_status(self, status_code: int) -> bool:
        return status_code in self.retry_on_status


# Single attempt, used when the caller asked for no retries
NO_RETRY_POLICY = RetryPolicy(max_attempts=1, base_delay=0.0, jitter=False)


def _next_delay(
    policy: RetryPolicy,
    attempt: int,
    error: RetryableError,
    func_name: str,
    on_retry: RetryCallback | None,
) -> float | None:
    """Return the delay before the next attempt, or None when exhausted."""
    if attempt + 1 >= policy.max_attempts:
        logger.warning(
            f"[{error.debug_id}] Max retries ({policy.max_attempts}) "
            f"exceeded for {func_name}: {error.message_safe}"
        )
        return None

    delay = policy.calculate_delay(attempt)
    logger.info(
        f"[{error.debug_id}] Retry {attempt + 1}/{policy.max_attempts} "
        f"for {func_name} in {delay:.2f}s: {error.message_safe}"
    )
    if on_retry:
        on_retry(attempt, error, delay)
    return delay


def with_retry(
    policy: RetryPolicy | None = None,
    on_retry: RetryCallback | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying async functions on RetryableError.

    Any other exception propagates immediately.

    Example:
        @with_retry(RetryPolicy(max_attempts=5))
        async def fetch_data(url: str) -> dict:
            ...
    """
    retry_policy = policy or NO_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    delay = _next_delay(retry_policy, attempt, e, func.__name__, on_retry)
                    if delay is None:
                        raise
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper  # type: ignore

    return decorator


def sync_with_retry(
    policy: RetryPolicy | None = None,
    on_retry: RetryCallback | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying synchronous functions. Uses time.sleep."""
    retry_policy = policy or NO_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except RetryableError as e:
                    delay = _next_delay(retry_policy, attempt, e, func.__name__, on_retry)
                    if delay is None:
                        raise
                    time.sleep(delay)
                    attempt += 1

        return wrapper  # type: ignore

    return decorator
