"""Tests for the search API and rendered-page backends."""

import httpx
import pytest
from conftest import FakeFetcher

from prospector.config.settings import SearchConfig
from prospector.errors import TransientFetchError
from prospector.search.backends import BrowserSearchBackend, CustomSearchBackend, search_url
from prospector.search.types import SearchSource

CONFIGURED = SearchConfig(api_key="key", engine_id="cx", backend="api", max_calls_per_entity=10)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCustomSearchBackend:
    @pytest.mark.asyncio
    async def test_parses_items(self):
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(
                200,
                json={
                    "items": [
                        {"link": "https://acmeplumbing.com/", "title": "Acme", "snippet": "Plumbing"},
                        {"title": "no link"},
                    ]
                },
            )

        backend = CustomSearchBackend(CONFIGURED, client=_client(handler))
        results = await backend.fetch("Acme Plumbing Phoenix", 25)
        assert [r.url for r in results] == ["https://acmeplumbing.com/"]
        assert seen["q"] == "Acme Plumbing Phoenix"
        assert seen["num"] == "10"

    @pytest.mark.asyncio
    async def test_unconfigured_backend_raises(self):
        backend = CustomSearchBackend(SearchConfig(api_key="", engine_id="", max_calls_per_entity=10))
        assert not backend.is_available
        with pytest.raises(TransientFetchError):
            await backend.fetch("Acme", 10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(429, json={}), httpx.Response(200, text="not json")],
    )
    async def test_bad_responses_are_transient(self, response):
        backend = CustomSearchBackend(CONFIGURED, client=_client(lambda request: response))
        with pytest.raises(TransientFetchError):
            await backend.fetch("Acme", 10)

    @pytest.mark.asyncio
    async def test_no_items_is_empty(self):
        backend = CustomSearchBackend(
            CONFIGURED, client=_client(lambda request: httpx.Response(200, json={}))
        )
        assert await backend.fetch("Acme", 10) == []


class TestBrowserSearchBackend:
    def test_search_urls(self):
        assert search_url(SearchSource.BING, "acme plumbing") == "https://www.bing.com/search?q=acme+plumbing"
        assert search_url(SearchSource.REGISTRY_PORTAL, "123456", "https://roc.example.gov/s").endswith(
            "?search=123456"
        )

    @pytest.mark.asyncio
    async def test_extracts_from_rendered_page(self):
        url = "https://www.bing.com/search?q=Acme+Plumbing"
        html = (
            '<li class="b_algo"><h2><a href="https://acmeplumbing.com/">Acme Plumbing</a></h2>'
            '<div class="b_caption"><p>Phoenix plumber</p></div></li>'
        )
        backend = BrowserSearchBackend(FakeFetcher({url: html}), SearchSource.BING)
        results = await backend.fetch("Acme Plumbing", 5)
        assert backend.name == "browser_bing"
        assert [r.url for r in results] == ["https://acmeplumbing.com/"]

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self):
        backend = BrowserSearchBackend(FakeFetcher(), SearchSource.GOOGLE)
        with pytest.raises(TransientFetchError):
            await backend.fetch("Acme Plumbing", 5)


class TestResponseShapeDrift:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [[], {"items": "none"}, {"items": ["not-an-object", 7]}, {"items": [{"link": ["x"]}]}],
    )
    async def test_unexpected_shapes_are_transient(self, payload):
        backend = CustomSearchBackend(
            CONFIGURED, client=_client(lambda request: httpx.Response(200, json=payload))
        )
        with pytest.raises(TransientFetchError):
            await backend.fetch("Acme Plumbing Phoenix AZ", 10)

    @pytest.mark.asyncio
    async def test_non_string_fields_are_blanked(self):
        payload = {"items": [{"link": "https://acmeplumbing.com/", "title": None, "snippet": 3}]}
        backend = CustomSearchBackend(
            CONFIGURED, client=_client(lambda request: httpx.Response(200, json=payload))
        )
        results = await backend.fetch("Acme", 10)
        assert results[0].title == ""
        assert results[0].snippet == ""
