"""Tests for the HTTP fetcher and robots.txt policy."""

import httpx
import pytest
from conftest import FakeTextSource

from prospector.browser.http import HttpFetcher
from prospector.browser.robots import RobotsPolicy
from prospector.errors import TransientFetchError


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHttpFetcher:
    @pytest.mark.asyncio
    async def test_fetch_returns_snapshot(self):
        def handler(request):
            return httpx.Response(200, text="<p>office@acmeplumbing.com</p>")

        async with HttpFetcher(client=_client(handler)) as fetcher:
            snapshot = await fetcher.fetch("https://acmeplumbing.com/contact")
        assert snapshot.status_code == 200
        assert "office@acmeplumbing.com" in snapshot.html
        assert snapshot.url == "https://acmeplumbing.com/contact"

    @pytest.mark.asyncio
    async def test_error_status_is_transient(self):
        fetcher = HttpFetcher(client=_client(lambda request: httpx.Response(503)))
        with pytest.raises(TransientFetchError):
            await fetcher.fetch("https://acmeplumbing.com/")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        fetcher = HttpFetcher(client=_client(handler))
        with pytest.raises(TransientFetchError):
            await fetcher.fetch("https://acmeplumbing.com/")

    @pytest.mark.asyncio
    async def test_get_text_does_not_raise_on_status(self):
        fetcher = HttpFetcher(client=_client(lambda request: httpx.Response(404, text="missing")))
        assert await fetcher.get_text("https://acmeplumbing.com/robots.txt") == (404, "missing")


class TestRobotsPolicy:
    @pytest.mark.asyncio
    async def test_disallowed_path(self):
        source = FakeTextSource(
            {"https://acmeplumbing.com/robots.txt": (200, "User-agent: *\nDisallow: /private\n")}
        )
        policy = RobotsPolicy(source)
        assert await policy.allowed("https://acmeplumbing.com/contact")
        assert not await policy.allowed("https://acmeplumbing.com/private/page")

    @pytest.mark.asyncio
    async def test_cached_per_origin(self):
        source = FakeTextSource()
        policy = RobotsPolicy(source)
        await policy.allowed("https://acmeplumbing.com/a")
        await policy.allowed("https://acmeplumbing.com/b")
        assert source.requested == ["https://acmeplumbing.com/robots.txt"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,allowed", [(404, True), (500, True), (401, False), (403, False)])
    async def test_status_semantics(self, status, allowed):
        source = FakeTextSource({"https://acmeplumbing.com/robots.txt": (status, "")})
        assert await RobotsPolicy(source).allowed("https://acmeplumbing.com/") is allowed

    @pytest.mark.asyncio
    async def test_unreachable_robots_allows(self):
        class Unreachable:
            async def get_text(self, url):
                raise TransientFetchError("timeout", url=url)

        assert await RobotsPolicy(Unreachable()).allowed("https://acmeplumbing.com/")

    @pytest.mark.asyncio
    async def test_disabled_and_non_http(self):
        assert await RobotsPolicy(FakeTextSource(), enabled=False).allowed("ftp://x")
        assert not await RobotsPolicy(FakeTextSource()).allowed("ftp://acmeplumbing.com/file")
