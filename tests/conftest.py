"""Shared fakes for pipeline tests. Nothing here touches the network."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from prospector.browser.robots import RobotsPolicy
from prospector.browser.types import PageSnapshot
from prospector.config.settings import KnowledgeConfig, ProspectorConfig
from prospector.errors import ReasoningError, TransientFetchError
from prospector.jobs.runner import JobRunner
from prospector.knowledge.store import KnowledgeStore
from prospector.registry.lookup import RegistryLookup
from prospector.search.types import SearchResult
from prospector.validation.validator import DomainFacts


class FakeFetcher:
    """Serves fixed HTML per URL; unknown URLs fail like a dead host."""

    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = dict(pages or {})
        self.fetched: list[str] = []

    async def fetch(self, url: str) -> PageSnapshot:
        self.fetched.append(url)
        if url not in self.pages:
            raise TransientFetchError(f"connection refused: {url}", url=url)
        return PageSnapshot(html=self.pages[url], url=url, status_code=200)


class FakeBackend:
    """Search backend answering from a fixed query map."""

    name = "fake"

    def __init__(
        self,
        answers: dict[str, list[SearchResult]] | None = None,
        failing: set[str] | None = None,
        default: list[SearchResult] | None = None,
    ) -> None:
        self.answers = answers or {}
        self.failing = failing or set()
        self.default = default or []
        self.queries: list[str] = []

    async def fetch(self, query: str, max_results: int) -> list[SearchResult]:
        self.queries.append(query)
        if query in self.failing or "*" in self.failing:
            raise TransientFetchError(f"backend down for {query!r}")
        return list(self.answers.get(query, self.default))[:max_results]


class FakeInspector:
    """DNS answers from a dict; unknown domains do not resolve."""

    def __init__(self, facts: dict[str, DomainFacts] | None = None) -> None:
        self.facts = facts or {}
        self.calls: list[str] = []

    async def inspect(self, domain: str) -> DomainFacts:
        self.calls.append(domain)
        return self.facts.get(domain, DomainFacts())


class FailingModel:
    """A configured model whose every call blows up."""

    is_available = True

    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or ReasoningError("model returned malformed JSON")
        self.calls = 0

    async def decide_strategy(self, ctx):
        self.calls += 1
        raise self.exc

    async def generate_queries(self, ctx):
        self.calls += 1
        raise self.exc

    async def interpret_results(self, stats):
        self.calls += 1
        raise self.exc


class FakeTextSource:
    """robots.txt bodies per URL."""

    def __init__(self, bodies: dict[str, tuple[int, str]] | None = None) -> None:
        self.bodies = bodies or {}
        self.requested: list[str] = []

    async def get_text(self, url: str) -> tuple[int, str]:
        self.requested.append(url)
        return self.bodies.get(url, (404, ""))


MX_OK = DomainFacts(resolves=True, mx_hosts=["mx1.acmeplumbing.com"])


class StallingFetcher:
    """Never answers; lets a test cancel a job mid-flight."""

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def fetch(self, url: str) -> PageSnapshot:
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def make_runner(
    data_dir: Path,
    pages: dict[str, str] | None = None,
    backend: FakeBackend | None = None,
    fetcher=None,
    **kwargs,
) -> JobRunner:
    """A runner wired entirely to fakes, persisting under `data_dir`."""
    store = KnowledgeStore(data_dir / "knowledge.json")
    config = ProspectorConfig(knowledge=KnowledgeConfig(data_dir=data_dir))
    kwargs.setdefault("model", FailingModel())
    return JobRunner(
        config=config,
        store=store,
        fetcher=fetcher or FakeFetcher(pages),
        search_backend=backend or FakeBackend(),
        registry=RegistryLookup(store),
        inspector=FakeInspector({"acmeplumbing.com": MX_OK}),
        robots=RobotsPolicy(FakeTextSource(), enabled=False),
        **kwargs,
    )


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_inspector():
    return FakeInspector({"acmeplumbing.com": MX_OK})
