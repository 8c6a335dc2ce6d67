"""
Ticketmaster Discovery API v2 source.

API: https://developer.ticketmaster.com/products-and-docs/apis/discovery-api/v2/
Requires TICKETMASTER_API_KEY (or ``api_key`` in the source options).
The API refuses deep paging past 1000 results (size * page < 1000).
"""

import math
import os
from typing import Optional

from ..errors import ConfigError
from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats
from ..raw import RawTicketmasterRecord
from .base import SourceAdapter

API_URL = "https://app.ticketmaster.com/discovery/v2/events.json"
PAGE_SIZE = 200
MAX_DEEP_RESULTS = 1000


class TicketmasterAdapter(SourceAdapter):
    name = "ticketmaster"
    base_url = "https://www.ticketmaster.com.au"

    def api_key(self, options: ScrapeOptions) -> Optional[str]:
        return options.api_key or os.environ.get("TICKETMASTER_API_KEY")

    def check_config(self, options: ScrapeOptions) -> None:
        if not self.api_key(options):
            raise ConfigError("TICKETMASTER_API_KEY not set", self.name)

    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        size = PAGE_SIZE if math.isinf(options.max_events) else int(min(PAGE_SIZE, options.max_events))
        size = max(size, 1)
        page = 0

        while not self.is_full(events, options.max_events):
            if (page + 1) * size > MAX_DEEP_RESULTS:
                break

            data = await self.fetch_json(
                API_URL,
                params={
                    "apikey": self.api_key(options),
                    "city": options.city,
                    "countryCode": options.country_code,
                    "size": size,
                    "page": page,
                    "sort": "date,asc",
                },
            )
            items = (data.get("_embedded") or {}).get("events", [])

            for item in items:
                if self.is_full(events, options.max_events):
                    break
                self.accept_json(RawTicketmasterRecord, item, stats, events)

            total_pages = (data.get("page") or {}).get("totalPages", 0)
            page += 1
            if not items or page >= total_pages:
                break
