"""Plain HTTP page fetcher for static pages and robots.txt."""

from __future__ import annotations

import httpx

from prospector.browser.types import PageSnapshot
from prospector.config.settings import BrowserConfig, TimeoutConfig
from prospector.errors import TransientFetchError


class HttpFetcher:
    """httpx-backed fetcher. One client is shared for the fetcher's lifetime."""

    def __init__(
        self,
        config: BrowserConfig | None = None,
        timeouts: TimeoutConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        config = config or BrowserConfig()
        timeouts = timeouts or TimeoutConfig()
        headers = {"User-Agent": config.user_agent} if config.user_agent else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeouts.http_timeout_s,
            follow_redirects=True,
            headers=headers,
        )

    async def fetch(self, url: str) -> PageSnapshot:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"{type(exc).__name__}: {exc}", url=url) from exc
        if response.status_code >= 400:
            raise TransientFetchError(f"HTTP {response.status_code}", url=url)
        return PageSnapshot(html=response.text, url=str(response.url), status_code=response.status_code)

    async def get_text(self, url: str) -> tuple[int, str]:
        """Status code and body, without raising on HTTP error statuses."""
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise TransientFetchError(f"{type(exc).__name__}: {exc}", url=url) from exc
        return response.status_code, response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
