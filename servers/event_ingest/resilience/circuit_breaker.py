"""Circuit breaker that stops hammering a listing once it keeps failing."""

import time
from enum import Enum
from typing import Any, Callable, Coroutine, Optional, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    """States for the circuit breaker."""

    CLOSED = "closed"  # requests allowed
    OPEN = "open"  # requests blocked
    HALF_OPEN = "half_open"  # one probe allowed


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open and blocking requests."""

    def __init__(self, circuit_name: str):
        super().__init__(f"Circuit breaker '{circuit_name}' is open")
        self.circuit_name = circuit_name


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failures.

    Only exceptions in ``trip_on`` count as failures; anything else
    propagates without touching the counter. After ``recovery_timeout``
    seconds a single probe is let through: success closes the circuit,
    failure reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        name: str = "default",
        trip_on: tuple[type[BaseException], ...] = (Exception,),
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening
            recovery_timeout: Seconds before a probe is allowed
            name: Name for logging, e.g. "whatson:theatre"
            trip_on: Exception types counted as failures
            clock: Monotonic time source (overridden in tests)
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.trip_on = trip_on
        self._clock = clock or time.monotonic
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at: Optional[float] = None

    async def call(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await ``coro`` unless the circuit is open.

        Raises:
            CircuitBreakerOpenError: Circuit open; ``coro`` is closed unawaited
        """
        if self.is_open:
            coro.close()
            raise CircuitBreakerOpenError(self.name)

        if self.state == CircuitState.OPEN:
            self.state = CircuitState.HALF_OPEN
            logger.info("circuit_half_open", circuit=self.name)

        try:
            result = await coro
        except self.trip_on as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info("circuit_closed", circuit=self.name)
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None

    def _on_failure(self, error: BaseException) -> None:
        self.failure_count += 1
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()
            logger.warning(
                "circuit_opened",
                circuit=self.name,
                failure_count=self.failure_count,
                recovery_timeout=self.recovery_timeout,
                error=str(error),
            )

    @property
    def is_open(self) -> bool:
        """True while requests are blocked (open and not yet due a probe)."""
        if self.state != CircuitState.OPEN:
            return False
        return self._clock() - (self.opened_at or 0.0) < self.recovery_timeout

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
        }
