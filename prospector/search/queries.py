"""Query cleaning, structuring and fallback variants for search backends."""

from __future__ import annotations

import re

PLATFORM_DOMAINS: dict[str, str] = {
    "facebook": "facebook.com",
    "linkedin": "linkedin.com",
    "nextdoor": "nextdoor.com",
    "instagram": "instagram.com",
    "twitter": "twitter.com",
    "x.com": "x.com",
    "youtube": "youtube.com",
    "yellowpages": "yellowpages.com",
    "whitepages": "whitepages.com",
    "directory": "yellowpages.com",
}

SEARCH_ATTRIBUTES = ("contact", "email", "phone", "info", "about", "contractor")

STATE_CODES = (
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL",
    "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT",
    "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI",
    "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
)

_QUOTES = re.compile(r"[\"']")
_PLUS = re.compile(r"\s*\+\s*")
_WHITESPACE = re.compile(r"\s+")
_CITY_STATE = re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s+([A-Z]{2})\b")
# Upper-case only: "in", "or", "me" are words far more often than states.
_STATE = re.compile(r"\b(" + "|".join(STATE_CODES) + r")\b")
_ZIP = re.compile(r"\b\d{5}(?:-\d{4})?\b")
_STOP_WORDS = re.compile(r"\b(contractor|email|contact|info|llc|llp|inc)\b", re.IGNORECASE)
_REGISTRY_NUMBER = re.compile(r"\b\d{6}\b")


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def clean_query(query: str) -> str:
    """Strip quotes and `+` operators and normalize whitespace. Idempotent."""
    without_quotes = _QUOTES.sub("", query or "")
    return _collapse(_PLUS.sub(" ", without_quotes))


def _remove_last(text: str, match: re.Match[str]) -> str:
    return _collapse(text[: match.start()] + " " + text[match.end() :])


def _platform_query(clean: str) -> str | None:
    for platform, domain in PLATFORM_DOMAINS.items():
        pattern = re.compile(rf"\b{re.escape(platform)}\b", re.IGNORECASE)
        if pattern.search(clean):
            company = _collapse(pattern.sub("", clean))
            if company:
                return f"{company} site:{domain}"
            return None
    return None


def structure_query(query: str) -> str:
    """Reorder a query as `name location attributes`, or `name site:<domain>`."""
    clean = clean_query(query)

    platform = _platform_query(clean)
    if platform:
        return platform

    attributes: list[str] = []
    remaining = clean
    for attribute in SEARCH_ATTRIBUTES:
        pattern = re.compile(rf"\b{attribute}\b", re.IGNORECASE)
        if pattern.search(remaining):
            attributes.append(attribute)
            remaining = _collapse(pattern.sub("", remaining))

    location = ""
    for pattern in (_CITY_STATE, _STATE, _ZIP):
        matches = list(pattern.finditer(remaining))
        if matches:
            last = matches[-1]
            location = last.group(0)
            remaining = _remove_last(remaining, last)
            break

    company = _collapse(remaining)
    if not company and not location:
        return clean
    return " ".join(part for part in (company, location, *attributes) if part)


def query_variants(query: str) -> list[str]:
    """Broad-to-narrow fallbacks, in order, de-duplicated, empties dropped."""
    clean = clean_query(query)
    words = clean.split(" ")
    candidates = [
        clean,
        structure_query(clean),
        " ".join(words[:5]),
        " ".join(words[:3]),
        _collapse(_STOP_WORDS.sub("", clean)),
        _collapse(_REGISTRY_NUMBER.sub("", clean)),
    ]
    variants: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants
