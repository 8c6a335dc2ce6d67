"""
Politeness controller pacing outbound requests per source.

Every adapter fetch runs through ``PolitenessController.run``, which
enforces for each source:
- at most one in-flight fetch
- a randomised minimum gap after the previous fetch finished
- a longer randomised pause after every ``batch_size`` fetches

Delays are configured in one place (``DEFAULT_POLITENESS``) instead of per
adapter. There are no retries here; retrying is the fetcher's concern.
"""

import asyncio
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, model_validator

from .errors import RunCancelledError

logger = structlog.get_logger()

T = TypeVar("T")


class DelayRange(BaseModel):
    """Closed range in milliseconds; a value is drawn uniformly per use."""

    model_config = ConfigDict(frozen=True)

    min_ms: int
    max_ms: int

    @model_validator(mode="after")
    def _ordered(self) -> "DelayRange":
        if self.min_ms < 0 or self.max_ms < self.min_ms:
            raise ValueError(f"invalid delay range {self.min_ms}-{self.max_ms}ms")
        return self

    def draw(self, rng: random.Random) -> float:
        """Draw a delay in seconds."""
        return rng.uniform(self.min_ms, self.max_ms) / 1000


class PolitenessConfig(BaseModel):
    """Pacing rules for one source."""

    model_config = ConfigDict(frozen=True)

    request_delay: DelayRange
    batch_size: Optional[int] = None
    batch_delay: Optional[DelayRange] = None
    request_timeout_s: float = 30.0

    def with_min_delay(self, min_ms: int) -> "PolitenessConfig":
        """Return a copy whose request delay is at least ``min_ms``."""
        current = self.request_delay
        if current.min_ms >= min_ms:
            return self
        delay = DelayRange(min_ms=min_ms, max_ms=max(current.max_ms, min_ms))
        return self.model_copy(update={"request_delay": delay})


DEFAULT_POLITENESS: dict[str, PolitenessConfig] = {
    "ticketmaster": PolitenessConfig(
        request_delay=DelayRange(min_ms=250, max_ms=500),
        request_timeout_s=15.0,
    ),
    "eventbrite": PolitenessConfig(
        request_delay=DelayRange(min_ms=500, max_ms=1000),
        request_timeout_s=15.0,
    ),
    "marriner": PolitenessConfig(
        request_delay=DelayRange(min_ms=800, max_ms=1200),
    ),
    "whatson": PolitenessConfig(
        request_delay=DelayRange(min_ms=1000, max_ms=1500),
        batch_size=10,
        batch_delay=DelayRange(min_ms=2000, max_ms=3000),
    ),
    "feverup": PolitenessConfig(
        request_delay=DelayRange(min_ms=1500, max_ms=2000),
    ),
    "artscentre": PolitenessConfig(
        request_delay=DelayRange(min_ms=4000, max_ms=8000),
        batch_size=5,
        batch_delay=DelayRange(min_ms=15000, max_ms=20000),
    ),
}

FALLBACK_POLITENESS = PolitenessConfig(request_delay=DelayRange(min_ms=1000, max_ms=2000))


class _SourceState:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.last_finished: Optional[float] = None
        self.fetch_count = 0


class PolitenessController:
    """Serialises and paces fetches per source for one run."""

    def __init__(
        self,
        configs: Optional[dict[str, PolitenessConfig]] = None,
        default: PolitenessConfig = FALLBACK_POLITENESS,
        rng: Optional[random.Random] = None,
    ):
        """Initialize controller.

        Args:
            configs: Per-source overrides merged over DEFAULT_POLITENESS
            default: Config for sources with no entry
            rng: Random source for delay draws (seeded in tests)
        """
        self.configs = {**DEFAULT_POLITENESS, **(configs or {})}
        self.default = default
        self._rng = rng or random.Random()
        self._states: dict[str, _SourceState] = {}
        self._cancelled = asyncio.Event()

    def config_for(self, source: str) -> PolitenessConfig:
        return self.configs.get(source, self.default)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Refuse new fetches and wake any pending pause."""
        if not self._cancelled.is_set():
            logger.info("politeness_cancelled")
        self._cancelled.set()

    def fetch_count(self, source: str) -> int:
        state = self._states.get(source)
        return state.fetch_count if state else 0

    def _state(self, source: str) -> _SourceState:
        if source not in self._states:
            self._states[source] = _SourceState()
        return self._states[source]

    def _check_cancelled(self, source: str) -> None:
        if self._cancelled.is_set():
            raise RunCancelledError("Run cancelled", source)

    async def _pause(self, source: str, seconds: float, kind: str) -> None:
        if seconds <= 0:
            return
        logger.debug("politeness_pause", source=source, kind=kind, seconds=round(seconds, 2))
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self._check_cancelled(source)

    @asynccontextmanager
    async def slot(self, source: str) -> AsyncIterator[PolitenessConfig]:
        """Hold the source's fetch slot once pacing allows it."""
        state = self._state(source)
        config = self.config_for(source)
        async with state.lock:
            self._check_cancelled(source)
            loop = asyncio.get_running_loop()

            if (
                config.batch_size
                and config.batch_delay
                and state.fetch_count
                and state.fetch_count % config.batch_size == 0
            ):
                await self._pause(source, config.batch_delay.draw(self._rng), "batch")
            elif state.last_finished is not None:
                wanted = config.request_delay.draw(self._rng)
                remaining = wanted - (loop.time() - state.last_finished)
                await self._pause(source, remaining, "request")

            self._check_cancelled(source)
            try:
                yield config
            finally:
                state.fetch_count += 1
                state.last_finished = loop.time()

    async def run(self, source: str, work: Callable[[], Awaitable[T]]) -> T:
        """Run ``work`` inside the source's paced fetch slot.

        Raises:
            RunCancelledError: If the run was cancelled before work started
        """
        async with self.slot(source):
            return await work()
