"""
Network fetchers used by source adapters.

- HttpFetcher: httpx client with browser-like headers, retrying transport
  errors and 429/5xx throttling responses
- BrowserFetcher: headless Chromium (Playwright) for pages that need
  JavaScript or infinite scrolling

Both return a FetchResponse and raise FetchError on transport failure.
Status codes are reported, not raised; adapters decide what is fatal.
"""

import asyncio
import json
from typing import Any, Optional, Protocol

import httpx
import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import ConfigError, FetchError
from .resilience.retry import RETRYABLE_STATUSES, retry_with_backoff

logger = structlog.get_logger()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,application/json;q=0.8,*/*;q=0.7",
    "Accept-Language": "en-AU,en;q=0.9",
}

BLOCKED_RESOURCE_TYPES = ("image", "media", "font", "stylesheet")


class FetchResponse:
    """Body and status of one fetch."""

    def __init__(self, url: str, status: int, text: str, headers: Optional[dict[str, str]] = None):
        self.url = url
        self.status = status
        self.text = text
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.text)

    def __repr__(self) -> str:
        return f"FetchResponse(url={self.url!r}, status={self.status})"


class Fetcher(Protocol):
    async def get(
        self,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> FetchResponse: ...


class HttpFetcher:
    """Plain HTTP fetcher over a shared httpx.AsyncClient."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """Initialize fetcher.

        Args:
            client: Pre-built client (tests pass one with a MockTransport)
            timeout: Default per-request timeout in seconds
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=DEFAULT_HEADERS,
            follow_redirects=True,
            timeout=timeout,
        )

    async def __aenter__(self) -> "HttpFetcher":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @retry_with_backoff(
        max_attempts=3,
        base_delay=1.0,
        max_delay=10.0,
        retryable_exceptions=(httpx.TransportError,),
        retry_if=lambda r: r.status_code in RETRYABLE_STATUSES,
    )
    async def _get(self, url, params, headers, timeout) -> httpx.Response:
        kwargs: dict[str, Any] = {"params": params, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return await self._client.get(url, **kwargs)

    async def get(
        self,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> FetchResponse:
        try:
            response = await self._get(url, params, headers, timeout)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching {url}", url) from e
        except httpx.TransportError as e:
            raise FetchError(f"Transport error fetching {url}: {e}", url) from e

        return FetchResponse(
            url=str(response.url),
            status=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )


class BrowserFetcher:
    """Headless Chromium fetcher.

    Chromium starts on context-manager enter or the first page request and
    is closed on exit. Images, fonts and stylesheets are blocked.
    """

    def __init__(self, headless: bool = True, block_resources: tuple[str, ...] = BLOCKED_RESOURCE_TYPES):
        self.headless = headless
        self.block_resources = block_resources
        self._playwright = None
        self._browser = None
        self._context = None
        self._start_lock = asyncio.Lock()

    async def __aenter__(self) -> "BrowserFetcher":
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def start(self) -> None:
        async with self._start_lock:
            if self._context is None:
                await self._launch()

    async def _launch(self) -> None:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                ],
            )
        except PlaywrightError as e:
            await self.close()
            raise ConfigError(
                f"Could not launch Chromium ({e}); run `playwright install chromium`"
            ) from e

        self._context = await self._browser.new_context(
            viewport={"width": 1920, "height": 1080},
            user_agent=DEFAULT_USER_AGENT,
            locale="en-AU",
            timezone_id="Australia/Melbourne",
        )
        if self.block_resources:
            await self._context.route("**/*", self._route)
        logger.info("browser_started", headless=self.headless)

    async def close(self) -> None:
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()
        self._playwright = self._browser = self._context = None

    async def _route(self, route) -> None:
        if route.request.resource_type in self.block_resources:
            await route.abort()
        else:
            await route.continue_()

    async def _new_page(self):
        if self._context is None:
            await self.start()
        return await self._context.new_page()

    async def get(
        self,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
        wait_for: Optional[str] = None,
    ) -> FetchResponse:
        """Render ``url`` and return the final HTML."""
        if params:
            url = str(httpx.URL(url, params=params))
        timeout_ms = (timeout or 30.0) * 1000

        page = await self._new_page()
        try:
            if headers:
                await page.set_extra_http_headers(headers)
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if wait_for:
                try:
                    await page.wait_for_selector(wait_for, timeout=timeout_ms / 2)
                except PlaywrightTimeoutError:
                    logger.debug("browser_selector_missing", url=url, selector=wait_for)
            html = await page.content()
            status = response.status if response else 200
            return FetchResponse(url=page.url, status=status, text=html)
        except PlaywrightError as e:
            raise FetchError(f"Browser failed to load {url}: {e}", url) from e
        finally:
            await page.close()

    async def collect_links(
        self,
        url: str,
        selector: str,
        *,
        max_scrolls: int = 20,
        stable_rounds: int = 4,
        scroll_pause_ms: int = 1500,
        limit: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> list[str]:
        """Scroll an infinite listing until no new links appear.

        Stops after ``max_scrolls`` scrolls, after ``stable_rounds`` scrolls
        in a row add nothing, or once ``limit`` links are found.
        """
        timeout_ms = (timeout or 30.0) * 1000
        page = await self._new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            links: list[str] = []
            unchanged = 0

            for _ in range(max_scrolls):
                hrefs = await page.eval_on_selector_all(selector, "els => els.map(e => e.href)")
                before = len(links)
                for href in hrefs:
                    if href and href not in links:
                        links.append(href)

                if limit is not None and len(links) >= limit:
                    break
                unchanged = unchanged + 1 if len(links) == before else 0
                if unchanged >= stable_rounds:
                    break

                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
                await page.wait_for_timeout(scroll_pause_ms)

            logger.debug("browser_links_collected", url=url, count=len(links))
            return links if limit is None else links[: int(min(limit, len(links)))]
        except PlaywrightError as e:
            raise FetchError(f"Browser failed to scroll {url}: {e}", url) from e
        finally:
            await page.close()
