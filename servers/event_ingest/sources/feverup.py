"""
Fever (feverup.com) source.

The city "things to do" page embeds a JSON-LD ItemList of experience URLs
(/m/<id>); anchors are used when the list is missing. Experience pages
carry JSON-LD Product/Event data with offers and the venue. robots.txt is
honoured for the listing and every experience page.
"""

import re
from typing import Any, Optional

import structlog
from bs4 import BeautifulSoup

from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats
from ..raw import RawFeverUpEvent
from ..robots import RobotsCache
from .base import SourceAdapter, json_ld_objects, ld_type_is, meta_content, text_of

logger = structlog.get_logger()

BASE_URL = "https://feverup.com"
EVENT_ID_RE = re.compile(r"/m/(\d+)")
GIFT_CARD_RE = re.compile(r"gift\s*card", re.IGNORECASE)


def city_url(city: str) -> str:
    return f"{BASE_URL}/en/{city.strip().lower().replace(' ', '-')}/things-to-do"


def parse_listing(html: str) -> list[str]:
    """Experience URLs in listing order, one per experience id."""
    soup = BeautifulSoup(html, "html.parser")
    urls: list[str] = []

    for obj in json_ld_objects(soup):
        if not ld_type_is(obj, "ItemList"):
            continue
        for element in obj.get("itemListElement", []):
            if not isinstance(element, dict):
                continue
            item = element.get("item")
            url = element.get("url") or (item.get("url") if isinstance(item, dict) else item)
            if isinstance(url, str):
                urls.append(url)

    if not urls:
        urls = [a.get("href") for a in soup.select('a[href*="/m/"]') if a.get("href")]

    seen: set[str] = set()
    unique = []
    for url in urls:
        url = url if url.startswith("http") else BASE_URL + url
        match = EVENT_ID_RE.search(url)
        if match and match.group(1) not in seen:
            seen.add(match.group(1))
            unique.append(url)
    return unique


def _image(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        return value.get("contentUrl") or value.get("url")
    return value if isinstance(value, str) else None


def _offer_prices(offers: Any) -> list[float]:
    offers = offers if isinstance(offers, list) else [offers]
    prices = []
    for offer in offers:
        if not isinstance(offer, dict):
            continue
        for key in ("price", "lowPrice", "highPrice"):
            try:
                value = float(offer.get(key))
            except (TypeError, ValueError):
                continue
            if value > 0:
                prices.append(value)
    return prices


def _place(obj: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    place = obj.get("location") or obj.get("areaServed")
    if isinstance(place, list):
        place = place[0] if place else None
    if not isinstance(place, dict):
        return None, None
    address = place.get("address")
    locality = address.get("addressLocality") if isinstance(address, dict) else None
    return place.get("name"), locality


def parse_event_page(html: str, url: str) -> Optional[RawFeverUpEvent]:
    """Experience page to raw record; None for gift cards."""
    soup = BeautifulSoup(html, "html.parser")
    data = next(
        (o for o in json_ld_objects(soup) if ld_type_is(o, "Product", "Event")),
        {},
    )

    name = data.get("name") or text_of(soup, "h1")
    if name and GIFT_CARD_RE.search(name):
        return None

    match = EVENT_ID_RE.search(url)
    venue, locality = _place(data)

    return RawFeverUpEvent(
        url=url,
        event_id=match.group(1) if match else None,
        name=name,
        description=data.get("description") or meta_content(soup, name="description"),
        image_url=_image(data.get("image")) or meta_content(soup, prop="og:image"),
        venue_name=venue,
        locality=locality,
        prices=_offer_prices(data.get("offers")),
        start_text=data.get("startDate"),
        date_text=text_of(soup, '[class*="date"]'),
    )


class FeverUpAdapter(SourceAdapter):
    name = "feverup"
    base_url = BASE_URL

    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        robots = RobotsCache(self.request)
        listing = city_url(options.city)

        if not await robots.allowed(listing):
            logger.warning("robots_disallowed", source=self.name, url=listing)
            return

        urls = parse_listing((await self.fetch(listing)).text)
        logger.info("feverup_listing_parsed", source=self.name, count=len(urls))

        for url in urls:
            if self.is_full(events, options.max_events):
                break
            if not await robots.allowed(url):
                logger.info("robots_disallowed", source=self.name, url=url)
                continue

            response = await self.fetch_detail(url, stats)
            if response is None:
                continue

            raw = parse_event_page(response.text, url)
            if raw is None:
                logger.debug("gift_card_skipped", source=self.name, url=url)
                continue
            self.accept(raw, stats, events)
