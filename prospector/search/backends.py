"""Search backends: the Programmable Search JSON API and rendered result pages."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import quote_plus

import httpx

from prospector.browser.types import PageFetcher
from prospector.config.settings import SearchConfig, TimeoutConfig
from prospector.errors import TransientFetchError
from prospector.search.extractors import extract_results
from prospector.search.types import SearchResult, SearchSource

logger = logging.getLogger(__name__)

API_MAX_RESULTS = 10

DEFAULT_REGISTRY_SEARCH_URL = "https://azroc.my.site.com/AZRoc/s/contractor-search"


class SearchBackend(Protocol):
    """One metered search provider."""

    name: str

    async def fetch(self, query: str, max_results: int) -> list[SearchResult]: ...


class CustomSearchBackend:
    """Google Programmable Search (Custom Search JSON API) over httpx."""

    name = "custom_search_api"

    def __init__(
        self,
        config: SearchConfig | None = None,
        timeouts: TimeoutConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or SearchConfig()
        self._timeouts = timeouts or TimeoutConfig()
        self._client = client

    @property
    def is_available(self) -> bool:
        return self._config.api_configured

    async def fetch(self, query: str, max_results: int) -> list[SearchResult]:
        if not self.is_available:
            raise TransientFetchError("Search API credentials are not configured")
        params = {
            "key": self._config.api_key,
            "cx": self._config.engine_id,
            "q": query,
            "num": str(max(1, min(max_results, API_MAX_RESULTS))),
        }
        try:
            if self._client is not None:
                response = await self._client.get(self._config.endpoint, params=params)
            else:
                async with httpx.AsyncClient(timeout=self._timeouts.http_timeout_s) as client:
                    response = await client.get(self._config.endpoint, params=params)
        except httpx.HTTPError as exc:
            raise TransientFetchError(
                f"{type(exc).__name__}: {exc}", url=self._config.endpoint
            ) from exc

        if response.status_code != 200:
            raise TransientFetchError(
                f"Search API returned HTTP {response.status_code}", url=self._config.endpoint
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientFetchError("Search API returned malformed JSON") from exc

        if not isinstance(payload, dict):
            raise TransientFetchError(
                f"Search API returned {type(payload).__name__}, expected an object",
                url=self._config.endpoint,
            )
        items = payload.get("items") or []
        if not isinstance(items, list):
            raise TransientFetchError("Search API 'items' is not a list", url=self._config.endpoint)

        results = []
        for item in items:
            if not isinstance(item, dict):
                continue
            link = item.get("link")
            if not isinstance(link, str) or not link:
                continue
            results.append(
                SearchResult(
                    url=link,
                    title=_text(item.get("title")),
                    snippet=_text(item.get("snippet")),
                )
            )
        if items and not results:
            raise TransientFetchError(
                "Search API items carried no usable links", url=self._config.endpoint
            )
        return results[:max_results]


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def search_url(
    source: SearchSource, query: str, registry_url: str = DEFAULT_REGISTRY_SEARCH_URL
) -> str:
    """The results page URL for `query` on a given source."""
    encoded = quote_plus(query)
    if source == SearchSource.REGISTRY_PORTAL:
        return f"{registry_url}?search={encoded}"
    if source == SearchSource.BING:
        return f"https://www.bing.com/search?q={encoded}"
    if source == SearchSource.PROFESSIONAL_NETWORK:
        return f"https://www.linkedin.com/search/results/all/?keywords={encoded}"
    if source == SearchSource.DIRECTORY:
        return f"https://www.google.com/search?q={encoded}+business+directory"
    return f"https://www.google.com/search?q={encoded}"


class BrowserSearchBackend:
    """Renders a search results page and runs the source's extractor chain."""

    def __init__(
        self,
        fetcher: PageFetcher,
        source: SearchSource = SearchSource.GOOGLE,
        registry_url: str = DEFAULT_REGISTRY_SEARCH_URL,
    ) -> None:
        self._fetcher = fetcher
        self._source = source
        self._registry_url = registry_url
        self.name = f"browser_{source.value}"

    @property
    def source(self) -> SearchSource:
        return self._source

    async def fetch(self, query: str, max_results: int) -> list[SearchResult]:
        url = search_url(self._source, query, self._registry_url)
        snapshot = await self._fetcher.fetch(url)
        results = extract_results(snapshot.html, self._source, base_url=snapshot.url or url)
        logger.info(
            "browser_search_extracted",
            extra={"source": self._source.value, "query": query, "results": len(results)},
        )
        return results[:max_results]
