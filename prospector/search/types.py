"""Search result types."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class SearchSource(str, Enum):
    """Where a rendered search page comes from."""

    REGISTRY_PORTAL = "registry_portal"
    GOOGLE = "google"
    BING = "bing"
    PROFESSIONAL_NETWORK = "professional_network"
    DIRECTORY = "directory"
    GENERIC = "generic"


class SearchResult(BaseModel):
    url: str
    title: str = ""
    snippet: str = ""

    model_config = {"frozen": True}


class SearchResponse(BaseModel):
    """Results plus the query variant that actually produced them."""

    results: list[SearchResult]
    query_used: str
