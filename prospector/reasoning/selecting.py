"""Reasoner selection policy: the model when allowed and available, rules otherwise."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from prospector.models import (
    AggregateStats,
    CostCategory,
    DiscoveryStrategy,
    EntityContext,
    EvidenceKind,
    ResultInterpretation,
)
from prospector.reasoning.base import MAX_QUERIES, Reasoner
from prospector.reasoning.rules import RuleBasedReasoner
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class ModelReasoner(Reasoner, Protocol):
    @property
    def is_available(self) -> bool: ...


class ReasoningCostSink(Protocol):
    def record(
        self, category: CostCategory, description: str, unit_cost: float, quantity: int = 1
    ) -> Any: ...

    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Any: ...


class SelectingReasoner:
    """Never raises. Every model failure is logged and answered by the rules."""

    def __init__(
        self,
        rules: RuleBasedReasoner,
        model: ModelReasoner | None = None,
        use_llm: bool = True,
        recorder: ReasoningCostSink | None = None,
        unit_cost: float = 0.0,
        entity_key: str | None = None,
    ) -> None:
        self._rules = rules
        self._model = model
        self._use_llm = use_llm
        self._recorder = recorder
        self._unit_cost = unit_cost
        self._entity_key = entity_key
        self.llm_calls = 0
        self.fallbacks = 0

    @property
    def uses_model(self) -> bool:
        return self._use_llm and self._model is not None and self._model.is_available

    def _fallback(self, operation: str, exc: Exception) -> None:
        self.fallbacks += 1
        emit_structured_error(
            logger,
            code=ErrorCode.REASONING_FAILED,
            message=str(exc),
            suppressed=True,
            entity_key=self._entity_key,
            details={"operation": operation, "exception_type": type(exc).__name__},
        )

    def _record(self, operation: str, content: str) -> None:
        self.llm_calls += 1
        if self._recorder is not None:
            self._recorder.record(CostCategory.REASONING, f"llm: {operation}", self._unit_cost)
            self._recorder.add_evidence(EvidenceKind.REASONING, f"llm:{operation}", content)

    async def decide_strategy(self, ctx: EntityContext) -> DiscoveryStrategy:
        if self.uses_model:
            assert self._model is not None
            try:
                strategy = await self._model.decide_strategy(ctx)
            except Exception as exc:
                self._fallback("decide_strategy", exc)
            else:
                if not strategy.search_queries:
                    strategy = strategy.model_copy(
                        update={"search_queries": self._rules.default_queries(ctx)[:MAX_QUERIES]}
                    )
                self._record("decide_strategy", strategy.model_dump_json())
                return strategy
        return self._rules.strategy_for(ctx)

    async def generate_queries(self, ctx: EntityContext) -> list[str]:
        if self.uses_model:
            assert self._model is not None
            try:
                queries = await self._model.generate_queries(ctx)
            except Exception as exc:
                self._fallback("generate_queries", exc)
            else:
                if queries:
                    self._record("generate_queries", "\n".join(queries))
                    return queries[:MAX_QUERIES]
        return self._rules.default_queries(ctx)

    async def interpret_results(self, stats: AggregateStats) -> ResultInterpretation:
        if self.uses_model:
            assert self._model is not None
            try:
                interpretation = await self._model.interpret_results(stats)
            except Exception as exc:
                self._fallback("interpret_results", exc)
            else:
                self._record("interpret_results", interpretation.model_dump_json())
                return interpretation
        return self._rules.interpretation_for(stats)
