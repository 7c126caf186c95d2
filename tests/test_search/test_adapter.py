"""Tests for the metered search adapter."""

import httpx
import pytest
from conftest import FakeBackend
from playwright.async_api import Error as PlaywrightError

from prospector.config.settings import SearchConfig
from prospector.errors import BudgetExceededError, TransientFetchError
from prospector.ledger.budget import BudgetLedger
from prospector.ledger.costs import CostRecorder
from prospector.models import CostCategory, EvidenceKind
from prospector.search.adapter import SearchProviderAdapter
from prospector.search.backends import CustomSearchBackend
from prospector.search.types import SearchResult

HIT = [SearchResult(url="https://acmeplumbing.com/contact", title="Contact")]


class TestBudgetEnforcement:
    @pytest.mark.asyncio
    async def test_exhausted_budget_raises_before_any_call(self):
        ledger = BudgetLedger(max_calls=0)
        backend = FakeBackend(default=HIT)
        adapter = SearchProviderAdapter(backend, ledger)
        with pytest.raises(BudgetExceededError) as excinfo:
            await adapter.search("Acme Plumbing Phoenix", entity_key="98765")
        assert backend.queries == []
        assert excinfo.value.stats.max == 0

    @pytest.mark.asyncio
    async def test_variants_capped_to_remaining_budget(self):
        ledger = BudgetLedger(max_calls=2)
        backend = FakeBackend()
        adapter = SearchProviderAdapter(backend, ledger)
        response = await adapter.search("Acme Plumbing LLC contact Phoenix AZ 123456", entity_key="1")
        assert len(backend.queries) == 2
        assert response.results == []
        assert ledger.call_count("1") == 2

    @pytest.mark.asyncio
    async def test_spend_cap_refuses(self):
        recorder = CostRecorder(budget_cap=0.004)
        adapter = SearchProviderAdapter(
            FakeBackend(default=HIT), BudgetLedger(), recorder=recorder, unit_cost=0.005
        )
        with pytest.raises(BudgetExceededError):
            await adapter.search("Acme Plumbing", entity_key="1")

    @pytest.mark.asyncio
    async def test_without_entity_key_ledger_untouched(self):
        ledger = BudgetLedger(max_calls=1)
        adapter = SearchProviderAdapter(FakeBackend(default=HIT), ledger)
        response = await adapter.search("Acme Plumbing")
        assert response.results == HIT
        assert ledger.call_count(None) == 0


class TestVariantFallback:
    @pytest.mark.asyncio
    async def test_stops_at_first_variant_with_results(self):
        backend = FakeBackend(answers={"Acme Plumbing Phoenix": HIT})
        ledger = BudgetLedger(max_calls=10)
        adapter = SearchProviderAdapter(backend, ledger)
        response = await adapter.search('"Acme Plumbing" + Phoenix AZ', entity_key="123456")
        assert response.query_used == "Acme Plumbing Phoenix"
        assert response.results == HIT
        assert backend.queries == ["Acme Plumbing Phoenix AZ", "Acme Plumbing Phoenix"]
        history = ledger.history("123456")
        assert [h.results for h in history] == [0, 1]

    @pytest.mark.asyncio
    async def test_failed_variant_falls_through(self):
        backend = FakeBackend(
            answers={"Acme Plumbing Phoenix": HIT}, failing={"Acme Plumbing Phoenix AZ"}
        )
        adapter = SearchProviderAdapter(backend, BudgetLedger())
        response = await adapter.search("Acme Plumbing Phoenix AZ", entity_key="1")
        assert response.results == HIT

    @pytest.mark.asyncio
    async def test_all_variants_failing_raises(self):
        ledger = BudgetLedger()
        adapter = SearchProviderAdapter(FakeBackend(failing={"*"}), ledger)
        with pytest.raises(TransientFetchError):
            await adapter.search("Acme Plumbing Phoenix AZ", entity_key="1")
        assert ledger.call_count("1") == 2

    @pytest.mark.asyncio
    async def test_no_results_returns_first_variant(self):
        adapter = SearchProviderAdapter(FakeBackend(), BudgetLedger())
        response = await adapter.search('"Acme Plumbing" + Phoenix AZ', entity_key="1")
        assert response.results == []
        assert response.query_used == "Acme Plumbing Phoenix AZ"


class TestCostRecording:
    @pytest.mark.asyncio
    async def test_cost_per_attempt_and_evidence_on_hit(self):
        recorder = CostRecorder()
        backend = FakeBackend(answers={"Acme Plumbing Phoenix": HIT})
        adapter = SearchProviderAdapter(backend, BudgetLedger(), recorder=recorder, unit_cost=0.005)
        await adapter.search("Acme Plumbing Phoenix AZ", entity_key="1")
        assert [i.category for i in recorder.items] == [CostCategory.SEARCH, CostCategory.SEARCH]
        assert recorder.total_cost == pytest.approx(0.01)
        assert [e.kind for e in recorder.evidence] == [EvidenceKind.SEARCH_RESULT]
        assert "acmeplumbing.com" in recorder.evidence[0].content


class TestBackendDrift:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [[], {"items": ["not-an-object"]}])
    async def test_drifted_api_payload_is_transient(self, payload):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
        )
        backend = CustomSearchBackend(
            SearchConfig(api_key="key", engine_id="cx", max_calls_per_entity=10), client=client
        )
        ledger = BudgetLedger()
        adapter = SearchProviderAdapter(backend, ledger)
        with pytest.raises(TransientFetchError):
            await adapter.search("Acme Plumbing Phoenix AZ", entity_key="98765")
        assert ledger.call_count("98765") == 2

    @pytest.mark.asyncio
    async def test_browser_error_fails_only_the_variant(self):
        class CrashingBackend(FakeBackend):
            async def fetch(self, query, max_results):
                self.queries.append(query)
                if len(self.queries) == 1:
                    raise PlaywrightError("Target page, context or browser has been closed")
                return HIT

        backend = CrashingBackend()
        adapter = SearchProviderAdapter(backend, BudgetLedger())
        response = await adapter.search("Acme Plumbing Phoenix AZ", entity_key="1")
        assert response.results == HIT
        assert len(backend.queries) == 2
