"""Search Provider Adapter: metered search with query fallbacks.

Every variant attempt reserves a ledger slot before the request goes out.
Variants stop at the first one that returns anything. Per-variant failures are
logged and the next variant is tried; only when every attempted variant
failed does the adapter raise.
"""

from __future__ import annotations

import json
import logging
from contextlib import nullcontext
from typing import Any, Protocol

import httpx
from playwright.async_api import Error as PlaywrightError

from prospector.errors import BudgetExceededError, TransientFetchError
from prospector.ledger.budget import BudgetLedger, normalize_key
from prospector.models import CostCategory, EvidenceKind
from prospector.search.backends import SearchBackend
from prospector.search.queries import clean_query, query_variants
from prospector.search.types import SearchResponse, SearchResult
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class CostSink(Protocol):
    def can_spend(self, amount: float) -> bool: ...

    def record(
        self, category: CostCategory, description: str, unit_cost: float, quantity: int = 1
    ) -> Any: ...

    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Any: ...


class SearchProviderAdapter:
    """Wraps a search backend with budget enforcement, variants and cost recording."""

    def __init__(
        self,
        backend: SearchBackend,
        ledger: BudgetLedger,
        recorder: CostSink | None = None,
        unit_cost: float = 0.0,
    ) -> None:
        self._backend = backend
        self._ledger = ledger
        self._recorder = recorder
        self._unit_cost = unit_cost

    @property
    def backend(self) -> SearchBackend:
        return self._backend

    def _exhausted(self, entity_key: str | None) -> BudgetExceededError:
        return BudgetExceededError(normalize_key(entity_key), self._ledger.stats(entity_key))

    def _within_spend_cap(self) -> bool:
        return self._recorder is None or self._recorder.can_spend(self._unit_cost)

    async def search(
        self, query: str, max_results: int = 10, entity_key: str | None = None
    ) -> SearchResponse:
        """Search `query`, trying narrower variants until one yields results.

        Raises BudgetExceededError before any request when the entity's ledger
        is exhausted or the job's spend cap would be crossed.
        """
        if entity_key is not None and not self._ledger.can_call(entity_key):
            raise self._exhausted(entity_key)
        if not self._within_spend_cap():
            raise self._exhausted(entity_key)

        variants = query_variants(query)
        if entity_key is not None:
            variants = variants[: self._ledger.remaining(entity_key)]
        if not variants:
            return SearchResponse(results=[], query_used=clean_query(query))

        attempted = 0
        failures = 0
        last_error: Exception | None = None

        for index, variant in enumerate(variants):
            if not self._within_spend_cap():
                break
            reservation = (
                self._ledger.reserve(entity_key, variant)
                if entity_key is not None
                else nullcontext()
            )
            try:
                with reservation as call:
                    attempted += 1
                    self._record_cost(variant)
                    results = await self._backend.fetch(variant, max_results)
                    if call is not None:
                        call.results = len(results)
            except BudgetExceededError:
                if attempted == 0:
                    raise
                break
            except (TransientFetchError, httpx.HTTPError, PlaywrightError) as exc:
                failures += 1
                last_error = exc
                emit_structured_error(
                    logger,
                    code=ErrorCode.SEARCH_VARIATION_FAILED,
                    message=str(exc),
                    suppressed=True,
                    entity_key=entity_key,
                    details={"variant": variant, "index": index, "backend": self._backend.name},
                )
                continue

            logger.info(
                "search_variant_completed",
                extra={
                    "entity_key": entity_key,
                    "variant": variant,
                    "index": index,
                    "results": len(results),
                    "backend": self._backend.name,
                },
            )
            if results:
                self._record_evidence(variant, results)
                return SearchResponse(results=results[:max_results], query_used=variant)

        if attempted and failures == attempted and last_error is not None:
            if isinstance(last_error, TransientFetchError):
                raise last_error
            raise TransientFetchError(str(last_error)) from last_error
        return SearchResponse(results=[], query_used=variants[0])

    def _record_cost(self, variant: str) -> None:
        if self._recorder is not None:
            self._recorder.record(
                CostCategory.SEARCH, f"{self._backend.name}: {variant}", self._unit_cost
            )

    def _record_evidence(self, variant: str, results: list[SearchResult]) -> None:
        if self._recorder is None:
            return
        content = json.dumps(
            {"query": variant, "results": [r.model_dump() for r in results]}, ensure_ascii=False
        )
        self._recorder.add_evidence(EvidenceKind.SEARCH_RESULT, self._backend.name, content)
