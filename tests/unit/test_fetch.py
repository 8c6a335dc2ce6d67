"""Tests for the HTTP fetcher and robots.txt cache."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import FakeFetcher
from servers.event_ingest.errors import FetchError
from servers.event_ingest.fetch import DEFAULT_USER_AGENT, FetchResponse, HttpFetcher
from servers.event_ingest.robots import RobotsCache


def fetcher_for(handler) -> HttpFetcher:
    return HttpFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestFetchResponse:
    """Tests for FetchResponse."""

    def test_ok_range(self):
        assert FetchResponse("https://x", 204, "").ok
        assert not FetchResponse("https://x", 404, "").ok

    def test_json(self):
        assert FetchResponse("https://x", 200, '{"a": 1}').json() == {"a": 1}


class TestHttpFetcher:
    """Tests for HttpFetcher over a mock transport."""

    @pytest.mark.asyncio
    async def test_returns_status_and_body(self):
        """Non-2xx statuses are returned, not raised."""
        fetcher = fetcher_for(lambda request: httpx.Response(404, text="gone"))

        response = await fetcher.get("https://example.com/missing")

        assert response.status == 404
        assert response.text == "gone"
        assert not response.ok

    @pytest.mark.asyncio
    async def test_passes_params(self):
        seen = []

        def handler(request):
            seen.append(request.url.params["page"])
            return httpx.Response(200, json={"ok": True})

        response = await fetcher_for(handler).get("https://api.example.com/events", params={"page": 2})

        assert seen == ["2"]
        assert response.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_retries_throttled_response(self):
        """503 is retried and the later success returned."""
        statuses = iter([503, 200])
        fetcher = fetcher_for(lambda request: httpx.Response(next(statuses), text="ok"))

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await fetcher.get("https://example.com/")

        assert response.status == 200
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_persistent_throttling_returned(self):
        """After the last attempt the throttled response is returned as-is."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="slow down")

        with patch("asyncio.sleep", new_callable=AsyncMock):
            response = await fetcher_for(handler).get("https://example.com/")

        assert response.status == 429
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_404_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        await fetcher_for(handler).get("https://example.com/")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_becomes_fetch_error(self):
        """Connection failures surface as FetchError after retries."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(FetchError) as exc_info:
                await fetcher_for(handler).get("https://example.com/")

        assert exc_info.value.url == "https://example.com/"


class TestRobotsCache:
    """Tests for RobotsCache."""

    ROBOTS = "User-agent: *\nDisallow: /private/\n"

    @pytest.mark.asyncio
    async def test_disallowed_path(self):
        http = FakeFetcher({"https://feverup.com/robots.txt": self.ROBOTS})
        robots = RobotsCache(http.get)

        assert await robots.allowed("https://feverup.com/m/123")
        assert not await robots.allowed("https://feverup.com/private/x")

    @pytest.mark.asyncio
    async def test_fetched_once_per_host(self):
        """robots.txt is fetched once and reused."""
        http = FakeFetcher({"https://feverup.com/robots.txt": self.ROBOTS})
        robots = RobotsCache(http.get, user_agent=DEFAULT_USER_AGENT)

        await robots.allowed("https://feverup.com/a")
        await robots.allowed("https://feverup.com/b")

        assert http.urls() == ["https://feverup.com/robots.txt"]

    @pytest.mark.asyncio
    async def test_missing_robots_allows_all(self):
        """A 404 robots.txt allows everything."""
        robots = RobotsCache(FakeFetcher().get)
        assert await robots.allowed("https://example.com/anything")

    @pytest.mark.asyncio
    async def test_unreachable_robots_allows_all(self, transport_error):
        url = "https://example.com/robots.txt"
        robots = RobotsCache(FakeFetcher({url: transport_error(url)}).get)
        assert await robots.allowed("https://example.com/anything")
