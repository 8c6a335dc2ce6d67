"""
What's On Melbourne (City of Melbourne) source.

Category tag pages (/tags/<category>/page-N) list event cards with title,
summary, dates, image and tags. Each card can be enriched from its detail
page (description, venue, address, prices). Three consecutive listing-page
failures end a category; the source only fails outright when no listing
page could be read at all.
"""

from typing import Optional

import structlog
from bs4 import BeautifulSoup, Tag

from ..errors import FetchError
from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats
from ..raw import RawWhatsOnListing
from ..resilience.circuit_breaker import CircuitBreaker
from .base import SourceAdapter, meta_content, text_of

logger = structlog.get_logger()

BASE_URL = "https://whatson.melbourne.vic.gov.au"
ITEM_SELECTOR = '.page-preview[data-listing-type*="event"]'
NEXT_SELECTOR = '.pagination a[rel="next"], a[rel="next"]'
MAX_CONSECUTIVE_FAILURES = 3


def listing_url(category: str, page: int) -> str:
    if page == 1:
        return f"{BASE_URL}/tags/{category}"
    return f"{BASE_URL}/tags/{category}/page-{page}"


def _image_of(item: Tag) -> Optional[str]:
    element = item.select_one(".page_image")
    if element is None:
        return None
    if element.name == "img":
        return element.get("data-src") or element.get("src")
    img = element.find("img")
    if img is not None:
        return img.get("data-src") or img.get("src")
    style = element.get("style") or ""
    if "url(" in style:
        return style.split("url(", 1)[1].split(")", 1)[0].strip("'\" ")
    return None


def parse_listing_page(html: str, category: str) -> tuple[list[RawWhatsOnListing], bool]:
    """Event cards on a tag page, and whether a next page exists."""
    soup = BeautifulSoup(html, "html.parser")
    listings = []

    for item in soup.select(ITEM_SELECTOR):
        link = item.select_one("a.main-link")
        href = link.get("href") if link else None
        if not href or "/things-to-do/" not in href:
            continue

        url = href if href.startswith("http") else BASE_URL + href
        times = [t.get("datetime") for t in item.select("time[datetime]") if t.get("datetime")]

        listings.append(RawWhatsOnListing(
            url=url,
            title=text_of(item, "h2.title") or link.get_text(" ", strip=True),
            summary=text_of(item, "p.summary"),
            start_text=times[0] if times else None,
            end_text=times[-1] if len(times) > 1 else None,
            image_url=_image_of(item),
            tags=[a.get_text(strip=True) for a in item.select(".tag-list a")],
            listing_category=category,
        ))

    return listings, soup.select_one(NEXT_SELECTOR) is not None


def enrich_from_detail(listing: RawWhatsOnListing, html: str) -> RawWhatsOnListing:
    """Add description, venue, address and price text from the detail page."""
    soup = BeautifulSoup(html, "html.parser")
    update: dict = {}

    description = meta_content(soup, name="description") or meta_content(soup, prop="og:description")
    if description:
        update["description"] = description

    location = [
        p.get_text(" ", strip=True)
        for p in soup.select(".location.details-widget p")
        if p.get_text(strip=True)
    ]
    if location:
        update["venue_name"] = location[0]
        if len(location) > 1:
            update["address"] = ", ".join(location[1:])

    price_text = text_of(soup, ".price-and-bookings")
    if price_text:
        update["price_text"] = price_text

    if not listing.start_text:
        times = [t.get("datetime") for t in soup.select("time[datetime]") if t.get("datetime")]
        if times:
            update["start_text"] = times[0]
            if len(times) > 1:
                update["end_text"] = times[-1]

    return listing.model_copy(update=update)


class WhatsOnAdapter(SourceAdapter):
    name = "whatson"
    base_url = BASE_URL

    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        pages_ok = 0
        last_error: Optional[FetchError] = None
        seen_urls: set[str] = set()
        seen_titles: set[str] = set()

        for category in options.categories:
            listings, ok, error = await self._collect_category(category, options)
            pages_ok += ok
            last_error = error or last_error

            # max_events applies per category
            kept = 0
            for listing in listings:
                if kept >= options.max_events:
                    break
                title_key = (listing.title or "").strip().lower()
                if listing.url in seen_urls or (title_key and title_key in seen_titles):
                    continue
                seen_urls.add(listing.url)
                seen_titles.add(title_key)

                if options.fetch_details:
                    response = await self.fetch_detail(listing.url, stats)
                    if response is not None:
                        listing = enrich_from_detail(listing, response.text)

                if self.accept(listing, stats, events) is not None:
                    kept += 1

        if pages_ok == 0 and last_error is not None:
            raise last_error

    async def _collect_category(
        self, category: str, options: ScrapeOptions
    ) -> tuple[list[RawWhatsOnListing], int, Optional[FetchError]]:
        """Walk a category's listing pages.

        Returns:
            (listings, pages read successfully, last page error)
        """
        breaker = CircuitBreaker(
            failure_threshold=MAX_CONSECUTIVE_FAILURES,
            recovery_timeout=3600,
            name=f"{self.name}:{category}",
            trip_on=(FetchError,),
        )
        listings: list[RawWhatsOnListing] = []
        seen: set[str] = set()
        pages_ok = 0
        last_error: Optional[FetchError] = None

        for page in range(1, options.max_pages + 1):
            if breaker.is_open:
                break
            url = listing_url(category, page)
            try:
                response = await breaker.call(self.fetch(url))
            except FetchError as e:
                last_error = e
                logger.warning("listing_page_failed", source=self.name, url=url, error=str(e))
                continue

            pages_ok += 1
            page_listings, has_next = parse_listing_page(response.text, category)
            new = [item for item in page_listings if item.url not in seen]
            seen.update(item.url for item in new)
            listings.extend(new)

            if not new or not has_next:
                break

        logger.info(
            "whatson_category_collected",
            source=self.name,
            category=category,
            listings=len(listings),
            pages=pages_ok,
        )
        return listings, pages_ok, last_error
