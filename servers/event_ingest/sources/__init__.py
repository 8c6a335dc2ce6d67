"""
Event source adapters.

Each source implements:
- scrape(options, stats) -> list[CanonicalEvent]
- Source-specific paging, detail fetching and failure handling
"""

from typing import Optional

from ..errors import ConfigError
from ..fetch import BrowserFetcher, Fetcher
from ..politeness import PolitenessController
from .artscentre import ArtsCentreAdapter
from .base import SourceAdapter
from .eventbrite import EventbriteAdapter
from .feverup import FeverUpAdapter
from .marriner import MarrinerAdapter
from .ticketmaster import TicketmasterAdapter
from .whatson import WhatsOnAdapter

ADAPTERS: dict[str, type[SourceAdapter]] = {
    adapter.name: adapter
    for adapter in (
        TicketmasterAdapter,
        EventbriteAdapter,
        ArtsCentreAdapter,
        MarrinerAdapter,
        FeverUpAdapter,
        WhatsOnAdapter,
    )
}


def create_adapter(
    name: str,
    politeness: PolitenessController,
    http: Fetcher,
    browser: Optional[BrowserFetcher] = None,
) -> SourceAdapter:
    """Build the adapter registered under ``name``.

    Raises:
        ConfigError: Unknown source name
    """
    try:
        adapter_cls = ADAPTERS[name]
    except KeyError:
        raise ConfigError(f"Unknown source: {name}", name) from None
    return adapter_cls(politeness, http, browser)


__all__ = [
    "ADAPTERS",
    "create_adapter",
    "SourceAdapter",
    "ArtsCentreAdapter",
    "EventbriteAdapter",
    "FeverUpAdapter",
    "MarrinerAdapter",
    "TicketmasterAdapter",
    "WhatsOnAdapter",
]
