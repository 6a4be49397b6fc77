"""
Retry policy and decorators.

Only RetryableError instances are retried; any other exception propagates on
the first attempt.
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


class RetryPolicy(BaseModel):
    """Exponential backoff with optional jitter.

    The delay before retry N (0-indexed) is
    min(base_delay * exponential_base ** N, max_delay), plus up to 25% jitter.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Initial delay in seconds.
        max_delay: Upper bound for the backoff.
        exponential_base: Growth factor between attempts.
        jitter: Whether to randomize delays.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    model_config = {"frozen": True}

    def calculate_delay(self, attempt: int) -> float:
        """Return the delay in seconds before the retry following `attempt`."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay += delay * 0.25 * random.random()
        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()


def _log_retry(func_name: str, policy: RetryPolicy, attempt: int, error: RetryableError, delay: float):
    logger.info(
        f"[{error.debug_id}] Retry {attempt + 1}/{policy.max_attempts} "
        f"for {func_name} in {delay:.2f}s: {error.message_safe}"
    )


def with_retry(
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Retry an async callable on RetryableError.

    Example:
        @with_retry(RetryPolicy(max_attempts=2, base_delay=0.1))
        async def score(answer: str) -> EvaluationScores:
            ...
    """
    retry_policy = policy or DEFAULT_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(retry_policy.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except RetryableError as e:
                    if attempt + 1 >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] Max retries ({retry_policy.max_attempts}) "
                            f"exceeded for {func.__name__}: {e.message_safe}"
                        )
                        raise
                    delay = retry_policy.calculate_delay(attempt)
                    _log_retry(func.__name__, retry_policy, attempt, e, delay)
                    if on_retry:
                        on_retry(attempt, e, delay)
                    await asyncio.sleep(delay)
            raise RuntimeError(f"Retry loop exited unexpectedly in {func.__name__}")

        return wrapper  # type: ignore

    return decorator


def sync_with_retry(
    policy: RetryPolicy | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Blocking counterpart of with_retry, for calls made on worker threads."""
    retry_policy = policy or DEFAULT_RETRY_POLICY

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(retry_policy.max_attempts):
                try:
                    return func(*args, **kwargs)
                except RetryableError as e:
                    if attempt + 1 >= retry_policy.max_attempts:
                        logger.warning(
                            f"[{e.debug_id}] Max retries ({retry_policy.max_attempts}) "
                            f"exceeded for {func.__name__}: {e.message_safe}"
                        )
                        raise
                    delay = retry_policy.calculate_delay(attempt)
                    _log_retry(func.__name__, retry_policy, attempt, e, delay)
                    if on_retry:
                        on_retry(attempt, e, delay)
                    time.sleep(delay)
            raise RuntimeError(f"Retry loop exited unexpectedly in {func.__name__}")

        return wrapper  # type: ignore

    return decorator
