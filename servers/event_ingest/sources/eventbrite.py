"""
Eventbrite API v3 source.

Eventbrite no longer offers public event search, so events are pulled per
organizer: /v3/organizers/{id}/events/. Requires EVENTBRITE_TOKEN (or
``api_key``) and at least one entry in ``organizer_ids``.
"""

import os
from typing import Optional

import structlog

from ..errors import ConfigError, FetchError
from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats
from ..raw import RawEventbriteRecord
from .base import SourceAdapter

logger = structlog.get_logger()

API_URL = "https://www.eventbriteapi.com/v3/organizers/{organizer_id}/events/"
EXPANSIONS = "venue,ticket_availability,category,subcategory,logo"


class EventbriteAdapter(SourceAdapter):
    name = "eventbrite"
    base_url = "https://www.eventbrite.com.au"

    def token(self, options: ScrapeOptions) -> Optional[str]:
        return options.api_key or os.environ.get("EVENTBRITE_TOKEN")

    def check_config(self, options: ScrapeOptions) -> None:
        if not self.token(options):
            raise ConfigError("EVENTBRITE_TOKEN not set", self.name)
        if not options.organizer_ids:
            raise ConfigError("eventbrite needs at least one organizer id", self.name)

    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        headers = {"Authorization": f"Bearer {self.token(options)}"}
        failures: list[FetchError] = []

        for organizer_id in options.organizer_ids:
            if self.is_full(events, options.max_events):
                break
            try:
                await self._scrape_organizer(organizer_id, headers, options, stats, events)
            except FetchError as e:
                failures.append(e)
                logger.warning(
                    "organizer_fetch_failed",
                    source=self.name,
                    organizer_id=organizer_id,
                    error=str(e),
                )

        if failures and len(failures) == len(options.organizer_ids):
            raise failures[-1]

    async def _scrape_organizer(
        self,
        organizer_id: str,
        headers: dict[str, str],
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        page = 1
        while not self.is_full(events, options.max_events):
            data = await self.fetch_json(
                API_URL.format(organizer_id=organizer_id),
                params={
                    "status": "live",
                    "order_by": "start_asc",
                    "expand": EXPANSIONS,
                    "page": page,
                },
                headers=headers,
            )
            items = data.get("events", [])
            if not items:
                return
            for item in items:
                if self.is_full(events, options.max_events):
                    return
                self.accept_json(RawEventbriteRecord, item, stats, events)

            pagination = data.get("pagination") or {}
            if not pagination.get("has_more_items") and page >= pagination.get("page_count", 1):
                return
            page += 1
