"""Fallback chain for sources with more than one way to list events."""

from typing import Any, Callable, Coroutine, TypeVar

import structlog

from ..errors import RunCancelledError

logger = structlog.get_logger()

T = TypeVar("T")


class FallbackChain:
    """Try async strategies in order until one succeeds.

    Run cancellation is never swallowed: a RunCancelledError from any
    strategy propagates immediately.
    """

    def __init__(
        self,
        *functions: Callable[..., Coroutine[Any, Any, T]],
        fallback_on: tuple[type[Exception], ...] = (Exception,),
    ):
        """Initialize fallback chain.

        Args:
            *functions: Async strategies, preferred first
            fallback_on: Exception types that move on to the next strategy
        """
        if not functions:
            raise ValueError("FallbackChain needs at least one function")
        self.functions = functions
        self.fallback_on = fallback_on

    async def execute(self, *args: Any, **kwargs: Any) -> T:
        """Return the first successful strategy's result.

        Raises:
            The last strategy's exception if every strategy fails
        """
        last_error: Exception | None = None

        for i, func in enumerate(self.functions):
            try:
                result = await func(*args, **kwargs)
            except RunCancelledError:
                raise
            except self.fallback_on as e:
                last_error = e
                logger.warning(
                    "fallback_attempt_failed",
                    function=func.__name__,
                    attempt=i + 1,
                    total_functions=len(self.functions),
                    error=str(e),
                )
                continue

            if i > 0:
                logger.info("fallback_used", function=func.__name__, attempt=i + 1)
            return result

        logger.error(
            "fallback_chain_exhausted",
            functions=[f.__name__ for f in self.functions],
            final_error=str(last_error),
        )
        raise last_error  # type: ignore


async def with_fallback(
    primary: Callable[..., Coroutine[Any, Any, T]],
    fallback: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run ``primary``, or ``fallback`` with the same arguments if it fails."""
    return await FallbackChain(primary, fallback).execute(*args, **kwargs)
