"""Tests for the listing circuit breaker."""

import pytest

from servers.event_ingest.errors import FetchError
from servers.event_ingest.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def listing():
    return "<html></html>"


async def page_failed():
    raise FetchError("HTTP 503", "https://whatson.melbourne.vic.gov.au/tags/music", 503)


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_starts_closed(self):
        cb = CircuitBreaker(failure_threshold=3)
        assert cb.state == CircuitState.CLOSED
        assert not cb.is_open

    @pytest.mark.asyncio
    async def test_opens_after_consecutive_failures(self):
        """Three failed pages open the circuit."""
        cb = CircuitBreaker(failure_threshold=3, name="whatson:music")

        for _ in range(3):
            with pytest.raises(FetchError):
                await cb.call(page_failed())

        assert cb.state == CircuitState.OPEN
        assert cb.is_open

    @pytest.mark.asyncio
    async def test_success_resets_count(self):
        """Failures must be consecutive."""
        cb = CircuitBreaker(failure_threshold=3)

        for _ in range(2):
            with pytest.raises(FetchError):
                await cb.call(page_failed())
        await cb.call(listing())
        with pytest.raises(FetchError):
            await cb.call(page_failed())

        assert cb.failure_count == 1
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_rejects_calls_when_open(self):
        """An open circuit refuses calls and closes the unawaited coroutine."""
        cb = CircuitBreaker(failure_threshold=1, name="whatson:theatre")
        with pytest.raises(FetchError):
            await cb.call(page_failed())

        coro = listing()
        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await cb.call(coro)

        assert exc_info.value.circuit_name == "whatson:theatre"
        assert coro.cr_frame is None

    @pytest.mark.asyncio
    async def test_only_trip_on_errors_count(self):
        """Errors outside trip_on pass through without counting."""
        cb = CircuitBreaker(failure_threshold=1, trip_on=(FetchError,))

        async def parse_bug():
            raise KeyError("title")

        with pytest.raises(KeyError):
            await cb.call(parse_bug())

        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED

    def test_get_status(self):
        cb = CircuitBreaker(failure_threshold=5, name="whatson:music")

        status = cb.get_status()

        assert status == {
            "name": "whatson:music",
            "state": "closed",
            "failure_count": 0,
            "failure_threshold": 5,
        }


class TestCircuitBreakerRecovery:
    """Tests for recovery through the half-open probe."""

    @pytest.mark.asyncio
    async def test_probe_allowed_after_timeout(self):
        clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60, clock=clock)
        with pytest.raises(FetchError):
            await cb.call(page_failed())

        clock.now += 30
        assert cb.is_open
        clock.now += 31
        assert not cb.is_open

        assert await cb.call(listing()) == "<html></html>"
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self):
        """A failing probe reopens the circuit for another full timeout."""
        clock = FakeClock()
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60, clock=clock)
        for _ in range(3):
            with pytest.raises(FetchError):
                await cb.call(page_failed())

        clock.now += 61
        with pytest.raises(FetchError):
            await cb.call(page_failed())

        assert cb.state == CircuitState.OPEN
        assert cb.opened_at == clock.now
        assert cb.is_open


class TestCircuitBreakerOpenError:
    """Tests for CircuitBreakerOpenError."""

    def test_error_includes_circuit_name(self):
        error = CircuitBreakerOpenError("whatson:festivals")
        assert "whatson:festivals" in str(error)
        assert error.circuit_name == "whatson:festivals"
