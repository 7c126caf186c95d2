"""Discovery Executor: turns a strategy into raw email sightings.

Official-site pages are scanned first when the approach allows it; search
queries then feed result pages, bounded by the strategy's URL budget. A
budget refusal ends the search loop, a failed fetch skips one URL, and every
attempted page lands in the visited-site trail.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol
from urllib.parse import urljoin, urlparse, urlunparse

from prospector.browser.robots import RobotsPolicy
from prospector.browser.types import PageFetcher
from prospector.discovery.emails import extract_emails, extract_emails_from_text
from prospector.errors import BudgetExceededError, TransientFetchError
from prospector.models import (
    CostCategory,
    DiscoveryStrategy,
    EmailSighting,
    Entity,
    EvidenceKind,
    JobPreferences,
    SourceCategory,
    VisitedSiteLog,
)
from prospector.search.adapter import SearchProviderAdapter
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

OFFICIAL_PATHS = ("", "/contact", "/contact-us", "/about", "/about-us")
MAX_QUERIES = 5

PROFESSIONAL_NETWORK_HOSTS = ("linkedin.com",)
SOCIAL_HOSTS = (
    "facebook.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "nextdoor.com",
    "youtube.com",
    "tiktok.com",
)
DIRECTORY_HOSTS = (
    "yellowpages.com",
    "whitepages.com",
    "bbb.org",
    "yelp.com",
    "manta.com",
    "angi.com",
    "homeadvisor.com",
    "houzz.com",
    "thumbtack.com",
    "buildzoom.com",
    "chamberofcommerce.com",
    "mapquest.com",
)


class EntityTrail(Protocol):
    @property
    def total_cost(self) -> float: ...

    def record(
        self, category: CostCategory, description: str, unit_cost: float, quantity: int = 1
    ) -> Any: ...

    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Any: ...

    def log_visit(
        self,
        url: str,
        started_at: datetime,
        success: bool,
        error: str | None = None,
        robots_respected: bool = True,
    ) -> VisitedSiteLog: ...


@dataclass
class DiscoveryOutcome:
    """Everything the executor gathered for one entity."""

    emails: list[str] = field(default_factory=list)
    sightings: list[EmailSighting] = field(default_factory=list)
    cost: float = 0.0
    visited: list[VisitedSiteLog] = field(default_factory=list)
    queries_run: list[str] = field(default_factory=list)
    budget_exhausted: bool = False


def host_of(url: str) -> str:
    host = urlparse(url).netloc.lower().split(":", 1)[0]
    return host.removeprefix("www.")


def _host_matches(host: str, domain: str) -> bool:
    domain = domain.lower().removeprefix("www.").strip(".")
    return bool(domain) and (host == domain or host.endswith("." + domain))


def normalize_url(url: str) -> str:
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, "", parsed.query, ""))


def official_pages(website: str) -> list[str]:
    """Site root plus the usual contact and about pages."""
    base = website.strip()
    if not urlparse(base).scheme:
        base = "https://" + base
    parsed = urlparse(base)
    root = f"{parsed.scheme}://{parsed.netloc}"
    pages = [base.rstrip("/") or root]
    for path in OFFICIAL_PATHS[1:]:
        page = urljoin(root + "/", path.lstrip("/"))
        if page not in pages:
            pages.append(page)
    return pages


def classify_source(url: str, official_website: str | None, registry_host: str = "") -> SourceCategory:
    host = host_of(url)
    if official_website and _host_matches(host, host_of(official_website) or official_website):
        return SourceCategory.OFFICIAL_WEBSITE
    if registry_host and _host_matches(host, registry_host):
        return SourceCategory.REGISTRY
    if any(_host_matches(host, d) for d in PROFESSIONAL_NETWORK_HOSTS):
        return SourceCategory.PROFESSIONAL_NETWORK
    if any(_host_matches(host, d) for d in SOCIAL_HOSTS):
        return SourceCategory.SOCIAL
    if any(_host_matches(host, d) for d in DIRECTORY_HOSTS):
        return SourceCategory.DIRECTORY
    return SourceCategory.WEB


class DiscoveryExecutor:
    """Runs one entity's strategy. One instance per entity run."""

    def __init__(
        self,
        fetcher: PageFetcher,
        adapter: SearchProviderAdapter,
        trail: EntityTrail,
        entity_key: str,
        preferences: JobPreferences | None = None,
        robots: RobotsPolicy | None = None,
        scrape_unit_cost: float = 0.0,
        max_results_per_query: int = 10,
        registry_host: str = "",
    ) -> None:
        self._fetcher = fetcher
        self._adapter = adapter
        self._trail = trail
        self._entity_key = entity_key
        self._preferences = preferences or JobPreferences()
        self._robots = robots
        self._scrape_unit_cost = scrape_unit_cost
        self._max_results = max_results_per_query
        self._registry_host = registry_host
        self._partial = DiscoveryOutcome()

    @property
    def partial_outcome(self) -> DiscoveryOutcome:
        """Sightings and visits gathered so far by the current or last run."""
        outcome = self._partial
        outcome.emails = list(dict.fromkeys(s.email for s in outcome.sightings))
        return outcome

    def domain_allowed(self, url: str, *, search_result: bool = True) -> bool:
        host = host_of(url)
        if not host:
            return False
        if any(_host_matches(host, d) for d in self._preferences.excluded_domains):
            return False
        if search_result and self._preferences.allowed_domains:
            return any(_host_matches(host, d) for d in self._preferences.allowed_domains)
        return True

    async def execute(
        self, strategy: DiscoveryStrategy, entity: Entity, queries: list[str]
    ) -> DiscoveryOutcome:
        outcome = DiscoveryOutcome()
        self._partial = outcome
        cost_before = self._trail.total_cost
        visited: set[str] = set()

        if strategy.uses_official_site and entity.official_website:
            for url in official_pages(entity.official_website):
                if not self.domain_allowed(url, search_result=False):
                    continue
                await self._scan_page(url, SourceCategory.OFFICIAL_WEBSITE, outcome, visited)

        run_search = strategy.uses_search or (
            strategy.approach == "registry-first" and not outcome.sightings
        )
        if run_search:
            await self._run_queries(strategy, entity, queries, outcome, visited)

        outcome.emails = []
        for sighting in outcome.sightings:
            if sighting.email not in outcome.emails:
                outcome.emails.append(sighting.email)
        outcome.cost = round(self._trail.total_cost - cost_before, 6)
        logger.info(
            "discovery_executed",
            extra={
                "entity_key": self._entity_key,
                "approach": strategy.approach,
                "emails": len(outcome.emails),
                "pages": len(outcome.visited),
                "queries": len(outcome.queries_run),
                "budget_exhausted": outcome.budget_exhausted,
            },
        )
        return outcome

    async def _run_queries(
        self,
        strategy: DiscoveryStrategy,
        entity: Entity,
        queries: list[str],
        outcome: DiscoveryOutcome,
        visited: set[str],
    ) -> None:
        pages_fetched = 0
        for query in [q for q in queries if q.strip()][:MAX_QUERIES]:
            try:
                response = await self._adapter.search(
                    query, max_results=self._max_results, entity_key=self._entity_key
                )
            except BudgetExceededError as exc:
                outcome.budget_exhausted = True
                logger.info(
                    "discovery_budget_exhausted",
                    extra={"entity_key": self._entity_key, "detail": str(exc)},
                )
                break
            except TransientFetchError as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.SEARCH_VARIATION_FAILED,
                    message=str(exc),
                    suppressed=True,
                    entity_key=self._entity_key,
                    details={"query": query},
                )
                continue

            outcome.queries_run.append(response.query_used)
            for result in response.results:
                if not self.domain_allowed(result.url):
                    continue
                category = classify_source(result.url, entity.official_website, self._registry_host)
                for email in extract_emails_from_text(f"{result.title} {result.snippet}"):
                    outcome.sightings.append(
                        EmailSighting(email=email, source=category, source_url=result.url)
                    )
                if pages_fetched >= strategy.max_urls or normalize_url(result.url) in visited:
                    continue
                pages_fetched += 1
                await self._scan_page(result.url, category, outcome, visited)

    async def _scan_page(
        self,
        url: str,
        category: SourceCategory,
        outcome: DiscoveryOutcome,
        visited: set[str],
    ) -> None:
        key = normalize_url(url)
        if key in visited:
            return
        visited.add(key)
        started = datetime.now(timezone.utc)

        if self._robots is not None and not await self._robots.allowed(url):
            outcome.visited.append(
                self._trail.log_visit(
                    url, started, success=False, error="Disallowed by robots.txt", robots_respected=True
                )
            )
            return

        try:
            snapshot = await self._fetcher.fetch(url)
        except TransientFetchError as exc:
            outcome.visited.append(self._trail.log_visit(url, started, success=False, error=str(exc)))
            emit_structured_error(
                logger,
                code=ErrorCode.PAGE_FETCH_FAILED,
                message=str(exc),
                suppressed=True,
                entity_key=self._entity_key,
                details={"url": url},
            )
            return

        outcome.visited.append(self._trail.log_visit(url, started, success=True))
        self._trail.record(CostCategory.SCRAPE, f"scrape: {url}", self._scrape_unit_cost)

        emails = extract_emails(snapshot.html)
        if not emails:
            return
        self._trail.add_evidence(
            EvidenceKind.EMAIL_EXTRACTION,
            category.value,
            json.dumps({"emails": emails, "page": snapshot.url or url}),
            url=url,
        )
        if category == SourceCategory.OFFICIAL_WEBSITE:
            self._trail.add_evidence(EvidenceKind.WEBSITE, category.value, snapshot.html, url=url)
        for email in emails:
            outcome.sightings.append(EmailSighting(email=email, source=category, source_url=url))
