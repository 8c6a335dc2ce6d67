"""Shared pytest fixtures for ingestion pipeline tests."""

import json
import random
from datetime import datetime
from typing import Any, Callable, Optional

import pytest

from servers.event_ingest.errors import FetchError
from servers.event_ingest.fetch import FetchResponse
from servers.event_ingest.models import DEFAULT_TIMEZONE, CanonicalEvent, Venue
from servers.event_ingest.politeness import DEFAULT_POLITENESS, DelayRange, PolitenessConfig, PolitenessController

NOW = datetime(2025, 10, 1, 9, 0, tzinfo=DEFAULT_TIMEZONE)

NO_DELAY = PolitenessConfig(request_delay=DelayRange(min_ms=0, max_ms=0))
ZERO_POLITENESS = {name: NO_DELAY for name in DEFAULT_POLITENESS}


class FakeFetcher:
    """Serves canned responses by URL and records every request.

    Route values may be a string (HTML, status 200), a dict or list (JSON),
    a FetchResponse, an exception to raise, or a callable taking
    (url, params) and returning any of those. Unknown URLs return 404.
    """

    def __init__(self, routes: Optional[dict[str, Any]] = None):
        self.routes = dict(routes or {})
        self.calls: list[tuple[str, Optional[dict[str, Any]]]] = []

    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]

    async def get(
        self,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
        wait_for: Optional[str] = None,
    ) -> FetchResponse:
        self.calls.append((url, params))
        value = self.routes.get(url)
        if callable(value):
            value = value(url, params)

        if value is None:
            return FetchResponse(url=url, status=404, text="not found")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, FetchResponse):
            return value
        if isinstance(value, (dict, list)):
            return FetchResponse(url=url, status=200, text=json.dumps(value))
        return FetchResponse(url=url, status=200, text=value)


@pytest.fixture
def fake_fetcher() -> Callable[..., FakeFetcher]:
    """Factory for FakeFetcher instances."""
    return FakeFetcher


@pytest.fixture
def transport_error() -> Callable[[str], FetchError]:
    """Build the FetchError a fetcher raises on a dropped connection."""
    return lambda url: FetchError(f"Transport error fetching {url}", url)


@pytest.fixture
def politeness() -> PolitenessController:
    """Politeness controller with no delays, for fast adapter tests."""
    return PolitenessController(ZERO_POLITENESS, default=NO_DELAY, rng=random.Random(7))


@pytest.fixture
def now() -> datetime:
    """Fixed 'current time' so year-less dates resolve predictably."""
    return NOW


@pytest.fixture
def make_event() -> Callable[..., CanonicalEvent]:
    """Factory for canonical events with sensible defaults."""

    def factory(**overrides: Any) -> CanonicalEvent:
        venue = overrides.pop("venue", None)
        if isinstance(venue, str):
            venue = Venue(name=venue)
        fields: dict[str, Any] = {
            "title": "Hamlet",
            "description": "Shakespeare's tragedy of the Danish prince",
            "category": "theatre",
            "subcategories": ["Shakespeare"],
            "start_date": datetime(2025, 11, 1, 19, 30, tzinfo=DEFAULT_TIMEZONE),
            "venue": venue or Venue(name="Her Majesty's Theatre", address="219 Exhibition St, Melbourne VIC 3000"),
            "booking_url": "https://marrinergroup.com.au/shows/hamlet",
            "source": "marriner",
            "source_id": "hamlet",
            "scraped_at": NOW,
            "last_updated": NOW,
        }
        fields.update(overrides)
        return CanonicalEvent(**fields)

    return factory


@pytest.fixture
def hamlet_pair(make_event) -> tuple[CanonicalEvent, CanonicalEvent]:
    """The same Hamlet season listed by Marriner and Ticketmaster."""
    marriner = make_event(
        title="Hamlet",
        venue=Venue(name="Her Majesty's Theatre"),
        start_date=datetime(2025, 11, 1, 19, 30, tzinfo=DEFAULT_TIMEZONE),
        source="marriner",
        source_id="hamlet",
        booking_url="https://marrinergroup.com.au/shows/hamlet",
    )
    ticketmaster = make_event(
        title="Hamlet — Marriner Theatres",
        venue=Venue(name="Her Majestys Theatre"),
        start_date=datetime(2025, 11, 1, 19, 30, tzinfo=DEFAULT_TIMEZONE),
        source="ticketmaster",
        source_id="G5vYZ9hamlet",
        booking_url="https://www.ticketmaster.com.au/hamlet-melbourne/event/G5vYZ9hamlet",
        price_min=79.0,
        price_max=189.0,
    )
    return marriner, ticketmaster
