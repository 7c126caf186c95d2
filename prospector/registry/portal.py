"""Official registry portal capture: layered selector guesses over rendered markup.

Best-effort by nature: the portal is third-party markup that changes without
notice. Field extraction is a pure function over HTML so the guesses can be
pinned down by fixtures, and every failure degrades to "no record".
"""

from __future__ import annotations

import logging
from urllib.parse import quote_plus, urlparse

from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError

from prospector.browser.layer import BrowserLayer
from prospector.config.settings import RegistryConfig
from prospector.registry.types import RegistryRecord
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

SEARCH_INPUT_SELECTORS = (
    'input[type="search"]',
    'input[name*="search"]',
    'input[id*="search"]',
    'input[placeholder*="ROC"]',
    'input[placeholder*="License"]',
    'input[placeholder*="Contractor"]',
    "input.slds-input",
    'input[class*="input"]',
    "input",
)

FIELD_SELECTORS: dict[str, tuple[str, ...]] = {
    "contractor_name": (
        '[data-label="Name"]',
        '[data-label="Contractor Name"]',
        '[data-label*="Contractor"]',
        ".slds-text-heading_large",
        ".slds-text-heading_medium",
        ".contractor-name",
        "h1",
        "h2",
        "h3",
    ),
    "business_name": (
        '[data-label*="Business"]',
        '[data-label*="Company"]',
        ".business-name",
        '[class*="business"]',
    ),
    "address": ('[data-label*="Address"]', '[data-label*="Location"]', ".address", '[class*="address"]'),
    "phone": ('[data-label*="Phone"]', '[data-label*="Telephone"]', ".phone", 'a[href^="tel:"]', '[class*="phone"]'),
    "website": ('[data-label*="Website"]', '[data-label*="Web"]', ".website", '[class*="website"]'),
    "classification": (
        '[data-label*="Classification"]',
        '[data-label*="Type"]',
        ".classification",
        '[class*="classification"]',
    ),
    "license_status": (
        '[data-label*="License Status"]',
        '[data-label*="Status"]',
        ".license-status",
        ".status",
        '[class*="status"]',
    ),
}

# First-cell header keyword -> field, checked in order.
ROW_HEADERS = (
    ("business", "business_name"),
    ("company", "business_name"),
    ("name", "contractor_name"),
    ("address", "address"),
    ("phone", "phone"),
    ("website", "website"),
    ("classification", "classification"),
    ("status", "license_status"),
)


def _text(element: Tag) -> str:
    return " ".join(element.get_text(" ", strip=True).split())


def _field_value(field: str, element: Tag, portal_host: str) -> str | None:
    if field == "phone" and element.name == "a":
        href = element.get("href")
        text = _text(element)
        if text:
            return text
        if isinstance(href, str):
            return href.removeprefix("tel:").strip() or None
        return None
    if field == "website":
        link = element if element.name == "a" else element.select_one("a[href]")
        href = link.get("href") if link is not None else None
        value = href if isinstance(href, str) and href.startswith("http") else _text(element)
        if not value or (portal_host and portal_host in value):
            return None
        return value
    return _text(element) or None


def extract_registry_fields(
    html: str, registry_number: str, portal_url: str = ""
) -> RegistryRecord | None:
    """Pull registry fields out of a results page. None when nothing was found."""
    soup = BeautifulSoup(html or "", "html.parser")
    portal_host = urlparse(portal_url).netloc
    data: dict[str, str] = {}

    for field, selectors in FIELD_SELECTORS.items():
        for selector in selectors:
            found = False
            for element in soup.select(selector):
                value = _field_value(field, element, portal_host)
                if value:
                    data[field] = value
                    found = True
                    break
            if found:
                break

    if "website" not in data:
        for link in soup.select('a[href^="http"]'):
            href = link.get("href")
            if isinstance(href, str) and (not portal_host or portal_host not in href):
                if "website" in _text(link).lower():
                    data["website"] = href
                    break

    for row in soup.select("tr"):
        cells = row.find_all(["td", "th"])
        if len(cells) < 2:
            continue
        header = _text(cells[0]).lower()
        value = _text(cells[1])
        if not value:
            continue
        for keyword, field in ROW_HEADERS:
            if keyword in header:
                data.setdefault(field, value)
                break

    if not data:
        return None
    return RegistryRecord(registry_number=registry_number, **data)


class PlaywrightRegistryPortal:
    """Registry portal capability backed by the shared Playwright browser."""

    def __init__(self, browser: BrowserLayer, config: RegistryConfig | None = None) -> None:
        self._browser = browser
        self._config = config or RegistryConfig()

    def search_url(self, registry_number: str) -> str:
        return f"{self._config.portal_url}?search={quote_plus(registry_number)}"

    async def lookup(self, registry_number: str) -> RegistryRecord | None:
        try:
            async with self._browser.open_page() as page:
                result = await self._browser.navigate(page, self._config.portal_url)
                if not result.ok:
                    emit_structured_error(
                        logger,
                        code=ErrorCode.REGISTRY_PORTAL_FAILED,
                        message=result.detail,
                        suppressed=True,
                        entity_key=registry_number,
                    )
                    return None
                await self._browser.settle(page)

                selector = None
                for candidate in SEARCH_INPUT_SELECTORS:
                    if (await self._browser.wait_for(page, candidate, timeout_ms=5000)).ok:
                        selector = candidate
                        break
                if selector is None:
                    logger.info(
                        "registry_portal_no_search_input",
                        extra={"registry_number": registry_number},
                    )
                    return None

                if not (await self._browser.fill_form(page, selector, registry_number)).ok:
                    return None
                await self._browser.press_key(page, "Enter")
                await self._browser.settle(page)
                snapshot = await self._browser.capture_dom(page)
        except PlaywrightError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.REGISTRY_PORTAL_FAILED,
                message=str(exc),
                suppressed=True,
                entity_key=registry_number,
            )
            return None

        record = extract_registry_fields(snapshot.html, registry_number, self._config.portal_url)
        logger.info(
            "registry_portal_captured",
            extra={"registry_number": registry_number, "found": record is not None},
        )
        return record
