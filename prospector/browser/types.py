"""Shared page-fetching types."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Protocol


@dataclass
class PageSnapshot:
    """Rendered page content returned by a fetcher."""

    html: str
    url: str
    title: str = ""
    status_code: int | None = None

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.html.encode()).hexdigest()[:16]


class PageFetcher(Protocol):
    """Anything that turns a URL into HTML. Raises TransientFetchError on failure."""

    async def fetch(self, url: str) -> PageSnapshot: ...
