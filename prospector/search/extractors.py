"""Heuristic result extraction: CSS selectors over rendered search pages.

Fast, deterministic, no AI cost. Each search source has an ordered chain of
extraction strategies; the first strategy that yields anything wins and the
generic outbound-link strategy closes every chain. All functions are pure
over HTML strings so markup drift can be tested with fixed fixtures.
"""

from __future__ import annotations

from typing import Callable
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from prospector.search.types import SearchResult, SearchSource

SNIPPET_LIMIT = 200
GENERIC_LIMIT = 10
GENERIC_MIN_TEXT = 5

Extractor = Callable[[BeautifulSoup, str], list[SearchResult]]


def _text(element: Tag | None) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text(" ", strip=True).split())


def _href(link: Tag | None, base_url: str) -> str:
    if link is None:
        return ""
    href = link.get("href")
    if not isinstance(href, str) or not href.strip():
        return ""
    return urljoin(base_url, href.strip())


def _cards(
    soup: BeautifulSoup,
    base_url: str,
    container: str,
    title: str,
    link: str,
    snippet: str | None = None,
) -> list[SearchResult]:
    """Generic card walk: a container holding a title element and a link."""
    results: list[SearchResult] = []
    seen: set[str] = set()
    for element in soup.select(container):
        title_el = element.select_one(title)
        link_el = element.select_one(link)
        if title_el is None or link_el is None:
            continue
        url = _href(link_el, base_url)
        if not url or url in seen:
            continue
        seen.add(url)
        if snippet is not None:
            snippet_text = _text(element.select_one(snippet))
        else:
            snippet_text = _text(element)[:SNIPPET_LIMIT]
        results.append(SearchResult(url=url, title=_text(title_el), snippet=snippet_text))
    return results


def extract_registry_results(soup: BeautifulSoup, base_url: str) -> list[SearchResult]:
    return _cards(
        soup,
        base_url,
        '.slds-card, .contractor-result, [class*="result"], [class*="contractor"]',
        'h1, h2, h3, .title, [class*="name"]',
        "a[href]",
    )


def _unwrap_google_redirect(url: str) -> str:
    parsed = urlparse(url)
    if parsed.path == "/url":
        target = parse_qs(parsed.query).get("q")
        if target:
            return target[0]
    return url


def extract_google_results(soup: BeautifulSoup, base_url: str) -> list[SearchResult]:
    results: list[SearchResult] = []
    seen: set[str] = set()
    for element in soup.select("div.g, div[data-ved]"):
        title_el = element.select_one("h3")
        link_el = element.select_one("a[href]")
        if title_el is None or link_el is None:
            continue
        raw_href = link_el.get("href")
        if isinstance(raw_href, str) and raw_href.startswith("/search"):
            continue
        url = _unwrap_google_redirect(_href(link_el, base_url))
        if not url or "google.com/search" in url or url in seen:
            continue
        seen.add(url)
        snippet_el = element.select_one('.VwiC3b, .s, span[style*="-webkit-line-clamp"]')
        results.append(SearchResult(url=url, title=_text(title_el), snippet=_text(snippet_el)))
    return results


def extract_bing_results(soup: BeautifulSoup, base_url: str) -> list[SearchResult]:
    return _cards(
        soup, base_url, "li.b_algo, .b_algo", "h2 a, a h2", "h2 a, a[href]", ".b_caption p, .b_snippet"
    )


def extract_professional_network_results(soup: BeautifulSoup, base_url: str) -> list[SearchResult]:
    return _cards(
        soup,
        base_url,
        '.search-result, .reusable-search__result-container, [class*="search-result"]',
        'a[href*="/in/"], .search-result__title',
        'a[href*="/in/"]',
    )


def extract_directory_results(soup: BeautifulSoup, base_url: str) -> list[SearchResult]:
    return _cards(
        soup,
        base_url,
        '.business-listing, .listing, [class*="business"], [class*="listing"]',
        "h1, h2, h3, .name, .title",
        "a[href]",
    )


def extract_generic_results(soup: BeautifulSoup, base_url: str) -> list[SearchResult]:
    """Any absolute outbound link with meaningful anchor text."""
    results: list[SearchResult] = []
    seen: set[str] = set()
    for link in soup.select('a[href^="http"]'):
        href = _href(link, base_url)
        text = _text(link)
        if "javascript:" in href or "#" in href or len(text) <= GENERIC_MIN_TEXT:
            continue
        if href in seen:
            continue
        seen.add(href)
        results.append(SearchResult(url=href, title=text))
        if len(results) >= GENERIC_LIMIT:
            break
    return results


EXTRACTOR_CHAINS: dict[SearchSource, list[Extractor]] = {
    SearchSource.REGISTRY_PORTAL: [extract_registry_results, extract_generic_results],
    SearchSource.GOOGLE: [extract_google_results, extract_generic_results],
    SearchSource.BING: [extract_bing_results, extract_generic_results],
    SearchSource.PROFESSIONAL_NETWORK: [
        extract_professional_network_results,
        extract_generic_results,
    ],
    SearchSource.DIRECTORY: [extract_directory_results, extract_generic_results],
    SearchSource.GENERIC: [extract_generic_results],
}


def extract_results(
    html: str, source: SearchSource, base_url: str = "", limit: int | None = None
) -> list[SearchResult]:
    """Run the source's chain; the first non-empty strategy wins."""
    soup = BeautifulSoup(html or "", "html.parser")
    for extractor in EXTRACTOR_CHAINS.get(source, [extract_generic_results]):
        results = extractor(soup, base_url)
        if results:
            return results[:limit] if limit is not None else results
    return []
