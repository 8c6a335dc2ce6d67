"""
Marriner Group source (Princess, Regent, Comedy theatres and Forum Melbourne).

The /shows listing lazy-loads as you scroll, so show links are collected
with the browser when one is available, falling back to the static HTML.
Each show page is then fetched over plain HTTP and parsed with
BeautifulSoup.
"""

import re
from typing import Optional
from urllib.parse import urlparse

import structlog
from bs4 import BeautifulSoup

from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats
from ..raw import RawMarrinerShow
from ..resilience.fallback import with_fallback
from .base import SourceAdapter, meta_content, soup_of, text_of

logger = structlog.get_logger()

BASE_URL = "https://marrinergroup.com.au"
SHOWS_URL = f"{BASE_URL}/shows"
SHOW_LINK_SELECTOR = 'a[href*="/shows/"]'

KNOWN_VENUES = ["Princess Theatre", "Comedy Theatre", "Regent Theatre", "Forum Melbourne"]

# "hamlet-2025", "hamlet-12-nov", "hamlet-nov-2025" all belong to "hamlet"
DATE_SUFFIX_RE = re.compile(
    r"(-\d{1,2})?(-(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*)?(-\d{4})$"
    r"|(-\d{1,2})?-(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*$"
)


def show_slug(url: str) -> Optional[str]:
    """Show slug with any date suffix removed, or None for non-show URLs."""
    path = urlparse(url).path.rstrip("/")
    if not path.startswith("/shows/"):
        return None
    slug = path[len("/shows/"):].split("/")[0]
    if not slug:
        return None
    return DATE_SUFFIX_RE.sub("", slug) or slug


def unique_shows(urls: list[str]) -> list[tuple[str, str]]:
    """(slug, url) pairs in listing order, one per show."""
    seen: set[str] = set()
    shows = []
    for url in urls:
        slug = show_slug(url)
        if slug and slug not in seen:
            seen.add(slug)
            shows.append((slug, url))
    return shows


def _venue_from_title(title: Optional[str]) -> Optional[str]:
    if not title:
        return None
    for venue in KNOWN_VENUES:
        if venue.lower() in title.lower():
            return venue
    return None


def _first_content_image(soup: BeautifulSoup) -> Optional[str]:
    for img in soup.find_all("img"):
        src = img.get("src") or ""
        alt = (img.get("alt") or "").lower()
        if src and not any(s in src for s in ("logo", "icon", "nav")) and "logo" not in alt:
            return src
    return None


def parse_show_page(html: str, url: str, slug: Optional[str] = None) -> RawMarrinerShow:
    """Extract a show from its detail page."""
    soup = BeautifulSoup(html, "html.parser")
    title = text_of(soup, "h1")

    paragraphs = [p.get_text(" ", strip=True) for p in soup.select(".description p")]
    description = " ".join(p for p in paragraphs if p) or meta_content(soup, name="description")

    image = meta_content(soup, prop="og:image") or _first_content_image(soup)
    if image and not image.startswith("http"):
        image = BASE_URL + ("" if image.startswith("/") else "/") + image

    return RawMarrinerShow(
        url=url,
        slug=slug or show_slug(url),
        title=title,
        date_text=text_of(soup, ".dates"),
        venue_name=text_of(soup, "h2") or text_of(soup, ".location") or _venue_from_title(title),
        description=description,
        image_url=image,
        info_text=text_of(soup, ".info"),
    )


class MarrinerAdapter(SourceAdapter):
    name = "marriner"
    base_url = BASE_URL
    default_use_browser = True

    def check_config(self, options: ScrapeOptions) -> None:
        # Without a browser the static listing is used instead.
        return None

    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        urls = await self.show_urls(options)
        shows = unique_shows(urls)[: _limit(options.max_shows)]
        logger.info("marriner_shows_found", source=self.name, count=len(shows))

        for slug, url in shows[: _limit(options.max_detail_fetches)]:
            if self.is_full(events, options.max_events):
                break
            response = await self.fetch_detail(url, stats)
            if response is None:
                continue
            self.accept(parse_show_page(response.text, url, slug), stats, events)

    async def show_urls(self, options: ScrapeOptions) -> list[str]:
        if self.uses_browser(options) and self.browser is not None:
            return await with_fallback(self._browser_show_urls, self._static_show_urls, options)
        return await self._static_show_urls(options)

    async def _browser_show_urls(self, options: ScrapeOptions) -> list[str]:
        async with self.politeness.slot(self.name) as config:
            return await self.browser.collect_links(
                SHOWS_URL,
                SHOW_LINK_SELECTOR,
                limit=None,
                timeout=config.request_timeout_s,
            )

    async def _static_show_urls(self, options: ScrapeOptions) -> list[str]:
        soup = soup_of(await self.fetch(SHOWS_URL))
        return [self.absolute(a.get("href")) for a in soup.select(SHOW_LINK_SELECTOR) if a.get("href")]


def _limit(value: float) -> Optional[int]:
    """Slice bound for an option that may be infinite."""
    return None if value == float("inf") else int(value)
