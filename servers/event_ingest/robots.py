"""Robots.txt checks for scraped sources."""

import asyncio
from typing import Awaitable, Callable
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import structlog

from .errors import FetchError
from .fetch import DEFAULT_USER_AGENT, FetchResponse

logger = structlog.get_logger()


class RobotsCache:
    """Caches robots.txt per host and answers allow checks.

    ``fetch`` is the adapter's paced fetch, so robots requests count
    towards the source's politeness budget. A robots.txt that cannot be
    fetched allows everything.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[FetchResponse]],
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self._fetch = fetch
        self._user_agent = user_agent
        self._cache: dict[str, RobotFileParser] = {}
        self._lock = asyncio.Lock()

    async def allowed(self, url: str) -> bool:
        """Return whether ``url`` may be crawled."""
        parsed = urlparse(url)
        key = f"{parsed.scheme}://{parsed.netloc}"

        async with self._lock:
            if key not in self._cache:
                parser = RobotFileParser()
                try:
                    response = await self._fetch(f"{key}/robots.txt")
                    parser.parse(response.text.splitlines() if response.ok else [])
                except FetchError as e:
                    logger.warning("robots_fetch_failed", host=parsed.netloc, error=str(e))
                    parser.parse([])
                self._cache[key] = parser
            parser = self._cache[key]

        return parser.can_fetch(self._user_agent, url)
