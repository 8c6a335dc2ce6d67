"""Resilience helpers: fetch retries, listing circuit breakers, fallbacks, source health."""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from .fallback import FallbackChain, with_fallback
from .health import HealthMonitor
from .retry import RETRYABLE_STATUSES, retry_with_backoff

__all__ = [
    "retry_with_backoff",
    "RETRYABLE_STATUSES",
    "CircuitBreaker",
    "CircuitState",
    "CircuitBreakerOpenError",
    "FallbackChain",
    "with_fallback",
    "HealthMonitor",
]
