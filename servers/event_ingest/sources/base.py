"""Shared adapter plumbing: paced fetching, stats accounting, normalisation."""

import json
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup
from pydantic import BaseModel, ValidationError

from ..errors import ConfigError, FetchError, MappingError, RunCancelledError
from ..fetch import BrowserFetcher, Fetcher, FetchResponse
from ..models import CanonicalEvent, ScrapeOptions, SourceRunStats
from ..normalize import normalize
from ..politeness import PolitenessController

logger = structlog.get_logger()


class SourceAdapter(ABC):
    """Base class for one event source.

    Subclasses implement ``_scrape`` and push results through ``accept``.
    Every network call goes through ``request``/``fetch`` so it is paced by
    the politeness controller.
    """

    name: str
    base_url: str = ""
    default_use_browser = False

    def __init__(
        self,
        politeness: PolitenessController,
        http: Fetcher,
        browser: Optional[BrowserFetcher] = None,
    ):
        self.politeness = politeness
        self.http = http
        self.browser = browser

    def uses_browser(self, options: ScrapeOptions) -> bool:
        if options.use_browser is None:
            return self.default_use_browser
        return options.use_browser

    def check_config(self, options: ScrapeOptions) -> None:
        """Raise ConfigError before any network call if the source can't run."""
        if self.uses_browser(options) and self.browser is None:
            raise ConfigError(f"{self.name} needs a browser fetcher", self.name)

    async def scrape(
        self,
        options: Optional[ScrapeOptions] = None,
        stats: Optional[SourceRunStats] = None,
    ) -> list[CanonicalEvent]:
        """
        Fetch and normalise events from this source.

        Args:
            options: Per-source knobs (defaults when omitted)
            stats: Accumulator updated in place

        Returns:
            Normalised events. On run cancellation the events gathered so
            far are returned and ``stats.status`` is "cancelled".

        Raises:
            ConfigError: Missing credentials or options
            FetchError: Listing could not be fetched
        """
        options = options or ScrapeOptions()
        stats = stats if stats is not None else SourceRunStats(source=self.name)
        self.check_config(options)

        start = time.monotonic()
        events: list[CanonicalEvent] = []
        logger.info("source_scrape_started", source=self.name)
        try:
            await self._scrape(options, stats, events)
        except RunCancelledError:
            stats.status = "cancelled"
            logger.info("source_scrape_cancelled", source=self.name, partial=len(events))
        finally:
            stats.duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            "source_scrape_finished",
            source=self.name,
            fetched=stats.fetched,
            normalised=stats.normalised,
            mapping_errors=stats.mapping_errors,
            detail_errors=stats.detail_errors,
            duration_ms=stats.duration_ms,
        )
        return events

    @abstractmethod
    async def _scrape(
        self,
        options: ScrapeOptions,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> None:
        """Append normalised events to ``events``."""

    # Network

    async def request(
        self,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        browser: bool = False,
        wait_for: Optional[str] = None,
    ) -> FetchResponse:
        """Paced fetch; returns the response whatever its status."""
        async with self.politeness.slot(self.name) as config:
            if browser:
                if self.browser is None:
                    raise ConfigError(f"{self.name} needs a browser fetcher", self.name)
                return await self.browser.get(
                    url, params=params, headers=headers,
                    timeout=config.request_timeout_s, wait_for=wait_for,
                )
            return await self.http.get(
                url, params=params, headers=headers, timeout=config.request_timeout_s,
            )

    async def fetch(self, url: str, **kwargs: Any) -> FetchResponse:
        """Paced fetch that raises FetchError on a non-2xx status."""
        try:
            response = await self.request(url, **kwargs)
        except FetchError as e:
            e.source = self.name
            raise
        if not response.ok:
            raise FetchError(f"HTTP {response.status} for {url}", url, response.status, self.name)
        return response

    async def fetch_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.fetch(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {url}", url, response.status, self.name) from e

    async def fetch_detail(
        self, url: str, stats: SourceRunStats, **kwargs: Any
    ) -> Optional[FetchResponse]:
        """Fetch a detail page; failures are counted and logged, not raised."""
        try:
            return await self.fetch(url, **kwargs)
        except FetchError as e:
            stats.detail_errors += 1
            logger.warning(
                "detail_fetch_failed",
                source=self.name,
                url=url,
                status=e.status,
                error=str(e),
            )
            return None

    # Records

    def accept(
        self,
        raw: BaseModel,
        stats: SourceRunStats,
        events: list[CanonicalEvent],
        now: Optional[datetime] = None,
    ) -> Optional[CanonicalEvent]:
        """Count a raw record and keep it if it normalises."""
        stats.fetched += 1
        try:
            event = normalize(raw, now=now)
        except MappingError as e:
            stats.mapping_errors += 1
            logger.warning("mapping_failed", source=self.name, field=e.field, error=str(e))
            return None

        stats.normalised += 1
        events.append(event)
        return event

    def accept_json(
        self,
        model: type[BaseModel],
        payload: dict[str, Any],
        stats: SourceRunStats,
        events: list[CanonicalEvent],
    ) -> Optional[CanonicalEvent]:
        """Validate an API item into its raw model, then ``accept`` it."""
        try:
            raw = model.model_validate(payload)
        except ValidationError as e:
            stats.fetched += 1
            stats.mapping_errors += 1
            logger.warning("raw_record_invalid", source=self.name, error=str(e))
            return None
        return self.accept(raw, stats, events)

    @staticmethod
    def is_full(events: list[CanonicalEvent], limit: float) -> bool:
        return len(events) >= limit

    # HTML helpers

    def absolute(self, href: Optional[str]) -> Optional[str]:
        if not href:
            return None
        return urljoin(self.base_url + "/", href)


def soup_of(response: FetchResponse) -> BeautifulSoup:
    return BeautifulSoup(response.text, "html.parser")


def text_of(soup: BeautifulSoup, selector: str) -> Optional[str]:
    element = soup.select_one(selector)
    if element is None:
        return None
    return element.get_text(" ", strip=True) or None


def meta_content(soup: BeautifulSoup, *, name: Optional[str] = None, prop: Optional[str] = None) -> Optional[str]:
    attrs = {"name": name} if name else {"property": prop}
    element = soup.find("meta", attrs=attrs)
    if element is None:
        return None
    content = element.get("content")
    return content.strip() if content and content.strip() else None


def json_ld_objects(soup: BeautifulSoup) -> list[dict[str, Any]]:
    """All JSON-LD objects on the page, with @graph lists flattened."""
    objects: list[dict[str, Any]] = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        stack = data if isinstance(data, list) else [data]
        for item in stack:
            if not isinstance(item, dict):
                continue
            if isinstance(item.get("@graph"), list):
                objects.extend(i for i in item["@graph"] if isinstance(i, dict))
            else:
                objects.append(item)
    return objects


def ld_type_is(obj: dict[str, Any], *types: str) -> bool:
    value = obj.get("@type")
    values = value if isinstance(value, list) else [value]
    return any(v in types for v in values)
