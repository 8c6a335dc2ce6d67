"""Retry with exponential backoff for transient fetch failures."""

import asyncio
import random
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

# Statuses worth another attempt: throttling and transient upstream errors.
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter: bool = True,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay in seconds before retry number ``attempt`` (0-based)."""
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay *= 0.5 + (rng or random).random()
    return delay


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    retry_if: Optional[Callable[[Any], bool]] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for async retry with exponential backoff.

    Args:
        max_attempts: Total attempts including the first
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Scale each delay by a random factor in [0.5, 1.5)
        retryable_exceptions: Exception types that trigger a retry
        retry_if: Predicate on a returned value that triggers a retry
            (e.g. a 503 response); the last value is returned as-is

    Returns:
        Decorated async function with retry logic
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(max_attempts):
                last = attempt == max_attempts - 1
                try:
                    result = await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if last:
                        logger.error(
                            "retry_exhausted",
                            function=func.__name__,
                            max_attempts=max_attempts,
                            error=str(e),
                        )
                        raise
                    reason = str(e)
                else:
                    if last or retry_if is None or not retry_if(result):
                        return result
                    reason = f"retryable result {getattr(result, 'status_code', result)!r}"

                delay = backoff_delay(attempt, base_delay, max_delay, exponential_base, jitter)
                logger.warning(
                    "retry_attempt",
                    function=func.__name__,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=round(delay, 2),
                    reason=reason,
                )
                await asyncio.sleep(delay)

            raise RuntimeError("max_attempts must be at least 1")

        return wrapper  # type: ignore

    return decorator
