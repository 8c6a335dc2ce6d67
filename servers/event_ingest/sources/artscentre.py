"""
Arts Centre Melbourne source.

Production URLs come from the sitemap (/whats-on/ pages for this year or
later). Pages sit behind bot protection, so they are rendered in the
browser by default and paced slowly (see DEFAULT_POLITENESS). CAPTCHA
pages are counted as detail errors and skipped.
"""

import re
from datetime import datetime
from typing import Any, Optional

import structlog
from bs4 import BeautifulSoup

from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats, utcnow
from ..normalize import parse_amounts
from ..raw import RawArtsCentrePage
from .base import SourceAdapter, json_ld_objects, meta_content, text_of

logger = structlog.get_logger()

BASE_URL = "https://www.artscentremelbourne.com.au"
SITEMAP_URL = f"{BASE_URL}/sitemap.xml"
URL_YEAR_RE = re.compile(r"/whats-on/(\d{4})/")

CAPTCHA_MARKERS = (
    "captcha",
    "cf-challenge",
    "verify you are human",
    "are you a robot",
    "access denied",
)


def parse_sitemap(xml: str, current_year: int) -> list[str]:
    """Production URLs, skipping past years and bare index pages."""
    soup = BeautifulSoup(xml, "html.parser")
    urls = []
    for loc in soup.find_all("loc"):
        url = loc.get_text(strip=True)
        if "/whats-on/" not in url:
            continue
        tail = url.split("/whats-on/", 1)[1].strip("/")
        if not tail or "/" not in tail:
            continue
        match = URL_YEAR_RE.search(url)
        if match and int(match.group(1)) < current_year:
            continue
        if url not in urls:
            urls.append(url)
    return urls


def is_captcha(html: str) -> bool:
    head = html[:20000].lower()
    return any(marker in head for marker in CAPTCHA_MARKERS)


def _is_event(obj: dict[str, Any]) -> bool:
    value = obj.get("@type")
    values = value if isinstance(value, list) else [value]
    return any(isinstance(v, str) and v.endswith("Event") for v in values)


def _address(location: Any) -> tuple[Optional[str], Optional[str]]:
    if isinstance(location, list):
        location = location[0] if location else None
    if not isinstance(location, dict):
        return None, None
    address = location.get("address")
    if isinstance(address, dict):
        parts = [address.get("streetAddress"), address.get("addressLocality")]
        address = ", ".join(p for p in parts if p) or None
    return location.get("name"), address if isinstance(address, str) else None


def _prices(offers: Any) -> list[float]:
    offers = offers if isinstance(offers, list) else [offers]
    prices = []
    for offer in offers:
        if not isinstance(offer, dict):
            continue
        for key in ("price", "lowPrice", "highPrice"):
            try:
                prices.append(float(offer.get(key)))
            except (TypeError, ValueError):
                continue
    return prices


def parse_production_page(html: str, url: str) -> RawArtsCentrePage:
    """JSON-LD Event data, falling back to visible HTML."""
    soup = BeautifulSoup(html, "html.parser")
    data = next((o for o in json_ld_objects(soup) if _is_event(o)), {})

    times = [t.get("datetime") for t in soup.select("time[datetime]") if t.get("datetime")]
    venue, address = _address(data.get("location"))

    image = data.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url")

    price_text = text_of(soup, '[class*="price"]')
    prices = _prices(data.get("offers")) or parse_amounts(price_text)

    free = data.get("isAccessibleForFree")
    return RawArtsCentrePage(
        url=url,
        title=data.get("name") or text_of(soup, "h1") or meta_content(soup, prop="og:title"),
        description=data.get("description") or meta_content(soup, prop="og:description")
        or meta_content(soup, name="description"),
        start_text=data.get("startDate") or (times[0] if times else None),
        end_text=data.get("endDate") or (times[-1] if len(times) > 1 else None),
        image_url=image if isinstance(image, str) else meta_content(soup, prop="og:image"),
        venue_name=venue,
        address=address,
        prices=prices,
        price_text=price_text,
        is_free=free if isinstance(free, bool) else None,
    )


class ArtsCentreAdapter(SourceAdapter):
    name = "artscentre"
    base_url = BASE_URL
    default_use_browser = True

    def __init__(self, *args, clock=utcnow, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock

    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        now: datetime = self._clock()
        urls = parse_sitemap((await self.fetch(SITEMAP_URL)).text, now.year)
        logger.info("artscentre_sitemap_parsed", source=self.name, count=len(urls))

        use_browser = self.uses_browser(options)
        attempted = 0
        for url in urls:
            if self.is_full(events, options.max_events) or attempted >= options.max_detail_fetches:
                break
            attempted += 1

            response = await self.fetch_detail(url, stats, browser=use_browser, wait_for="h1")
            if response is None:
                continue
            if is_captcha(response.text):
                stats.detail_errors += 1
                logger.warning("captcha_detected", source=self.name, url=url)
                continue

            self.accept(parse_production_page(response.text, url), stats, events, now=now)
