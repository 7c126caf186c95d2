"""The Orchestrator: per-entity discovery lifecycle controller.

The orchestrator is a finite state machine. It contains no search, scraping
or scoring logic of its own; it sequences the pipeline steps for one entity
with deterministic phase transitions:

    START -> REGISTRY_LOOKUP -> STRATEGY_DECISION -> EXECUTION
          -> VALIDATION -> INTERPRETATION -> DONE

Responsibilities:
- Walk one entity from START to DONE/FAILED through a guarded `_transition`
- Fail the entity only when the registry cannot resolve it
- Degrade every later stage to empty results; zero emails is still success
- Emit a progress event at every stage boundary
- Write confident candidates and source outcomes back to the knowledge store
"""

from __future__ import annotations

import logging
import time
from typing import Literal

from pydantic import BaseModel, Field

from prospector.discovery.executor import DiscoveryExecutor, DiscoveryOutcome
from prospector.errors import RegistryNotFoundError
from prospector.knowledge.store import EmailKnowledge, KnowledgeStore
from prospector.ledger.costs import EntityRecorder
from prospector.models import (
    AggregateStats,
    ContractorInput,
    DiscoveryStrategy,
    EmailCandidate,
    Entity,
    EntityContext,
    Evidence,
    ResultInterpretation,
    VisitedSiteLog,
)
from prospector.orchestrator.phases import TERMINAL_PHASES, VALID_TRANSITIONS, Phase
from prospector.reasoning.base import MAX_QUERIES
from prospector.reasoning.selecting import SelectingReasoner
from prospector.registry.lookup import RegistryLookup
from prospector.signals.channel import ProgressChannel
from prospector.signals.types import Severity
from prospector.telemetry.errors import ErrorCode, emit_structured_error
from prospector.validation.validator import EmailValidator

logger = logging.getLogger(__name__)

ENTITY_FIELDS = (
    "business_name",
    "official_website",
    "address",
    "phone",
    "classification",
    "license_status",
)


class OrchestratorError(Exception):
    """Raised on an invalid phase transition."""


class EntityRunResult(BaseModel):
    """Everything one entity run produced."""

    input: ContractorInput
    entity: Entity | None = None
    candidates: list[EmailCandidate] = Field(default_factory=list)
    strategy: DiscoveryStrategy | None = None
    interpretation: ResultInterpretation | None = None
    queries_run: list[str] = Field(default_factory=list)
    phase: Phase
    status: Literal["done", "failed"]
    cost: float = 0.0
    evidence: list[Evidence] = Field(default_factory=list)
    visited_sites: list[VisitedSiteLog] = Field(default_factory=list)
    llm_calls: int = 0
    error: str | None = None
    duration_s: float = 0.0


def merge_queries(*groups: list[str], limit: int = MAX_QUERIES) -> list[str]:
    """Order-preserving, case-insensitive union of query lists."""
    merged: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for query in group:
            key = " ".join(query.split()).lower()
            if key and key not in seen:
                seen.add(key)
                merged.append(query.strip())
    return merged[:limit]


class DiscoveryOrchestrator:
    """Runs the discovery pipeline for a single contractor input row."""

    def __init__(
        self,
        contractor: ContractorInput,
        registry: RegistryLookup,
        reasoner: SelectingReasoner,
        executor: DiscoveryExecutor,
        validator: EmailValidator,
        store: KnowledgeStore,
        trail: EntityRecorder,
        channel: ProgressChannel | None = None,
        fallback_city: str | None = None,
        min_email_confidence: int = 30,
    ) -> None:
        self._contractor = contractor
        self._registry = registry
        self._reasoner = reasoner
        self._executor = executor
        self._validator = validator
        self._store = store
        self._trail = trail
        self._channel = channel
        self._fallback_city = fallback_city
        self._min_email_confidence = min_email_confidence

        self._phase = Phase.START
        self._error: str | None = None
        self._entity: Entity | None = None
        self._strategy: DiscoveryStrategy | None = None
        self._queries: list[str] = []
        self._outcome = DiscoveryOutcome()
        self._candidates: list[EmailCandidate] = []
        self._interpretation: ResultInterpretation | None = None

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def entity_key(self) -> str:
        return self._trail.entity_key

    # --- Phase Transition ---

    async def _transition(self, to_phase: Phase) -> None:
        """Every phase transition MUST go through this method."""
        if to_phase not in VALID_TRANSITIONS.get(self._phase, set()):
            raise OrchestratorError(
                f"Invalid transition: {self._phase.value} -> {to_phase.value}"
            )
        logger.debug(
            "phase_transition",
            extra={
                "entity_key": self.entity_key,
                "from_phase": self._phase.value,
                "to_phase": to_phase.value,
            },
        )
        self._phase = to_phase

    async def _fail(self, reason: str) -> None:
        self._error = reason
        await self._emit(Severity.ERROR, "orchestrator", reason, {"phase": self._phase.value})
        await self._transition(Phase.FAILED)

    async def _emit(
        self, severity: Severity, component: str, summary: str, detail: dict | None = None
    ) -> None:
        if self._channel is None:
            return
        payload = {"entity_key": self.entity_key, "row_index": self._contractor.row_index}
        payload.update(detail or {})
        await self._channel.emit(component, summary, severity=severity, detail=payload)

    # --- Main Run Loop ---

    async def run(self) -> EntityRunResult:
        start = time.monotonic()
        handlers = {
            Phase.START: self._phase_start,
            Phase.REGISTRY_LOOKUP: self._phase_registry_lookup,
            Phase.STRATEGY_DECISION: self._phase_strategy_decision,
            Phase.EXECUTION: self._phase_execution,
            Phase.VALIDATION: self._phase_validation,
            Phase.INTERPRETATION: self._phase_interpretation,
        }
        try:
            while self._phase not in TERMINAL_PHASES:
                await handlers[self._phase]()
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.ENTITY_RUN_CRASHED,
                message=str(exc),
                suppressed=False,
                entity_key=self.entity_key,
                phase=self._phase.value,
                details={"exception_type": type(exc).__name__},
            )
            if self._phase not in TERMINAL_PHASES:
                await self._fail(f"Unhandled exception: {exc}")

        return EntityRunResult(
            input=self._contractor,
            entity=self._entity,
            candidates=self._candidates,
            strategy=self._strategy,
            interpretation=self._interpretation,
            queries_run=self._outcome.queries_run,
            phase=self._phase,
            status="done" if self._phase == Phase.DONE else "failed",
            cost=round(self._trail.total_cost, 6),
            evidence=self._trail.evidence,
            visited_sites=self._trail.visited_sites,
            llm_calls=self._reasoner.llm_calls,
            error=self._error,
            duration_s=round(time.monotonic() - start, 2),
        )

    # --- Phase Handlers ---

    async def _phase_start(self) -> None:
        await self._emit(
            Severity.INFO,
            "orchestrator",
            f"Starting discovery for {self._contractor.contractor_name or self._contractor.registry_number}",
        )
        await self._transition(Phase.REGISTRY_LOOKUP)

    async def _phase_registry_lookup(self) -> None:
        try:
            entity = await self._registry.lookup(
                self._contractor.registry_number,
                self._contractor.contractor_name,
                input=self._contractor,
                evidence=self._trail,
            )
        except RegistryNotFoundError as exc:
            await self._fail(str(exc))
            return

        self._entity = entity
        found = [name for name in ENTITY_FIELDS if getattr(entity, name)]
        await self._store.record_source_outcome(
            entity.source, entity.registry_number, entity.source != "input", found
        )
        await self._emit(
            Severity.SUCCESS,
            "registry",
            f"Resolved {entity.contractor_name} from {entity.source}",
            {"source": entity.source, "has_website": entity.has_official_website},
        )
        await self._transition(Phase.STRATEGY_DECISION)

    async def _phase_strategy_decision(self) -> None:
        assert self._entity is not None
        ctx = EntityContext.from_entity(self._entity, self._fallback_city)
        strategy = await self._reasoner.decide_strategy(ctx)
        generated: list[str] = []
        if strategy.approach != "registry-only":
            generated = await self._reasoner.generate_queries(ctx)
        self._strategy = strategy
        self._queries = merge_queries(strategy.search_queries, generated)

        await self._emit(
            Severity.INFO,
            "reasoner",
            f"Chose {strategy.approach} strategy",
            {
                "approach": strategy.approach,
                "queries": self._queries,
                "max_urls": strategy.max_urls,
                "reasoning": strategy.reasoning,
                "model": self._reasoner.uses_model,
            },
        )
        await self._transition(Phase.EXECUTION)

    async def _phase_execution(self) -> None:
        assert self._entity is not None and self._strategy is not None
        severity = Severity.INFO
        try:
            self._outcome = await self._executor.execute(self._strategy, self._entity, self._queries)
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.DISCOVERY_DEGRADED,
                message=str(exc),
                suppressed=True,
                entity_key=self.entity_key,
                phase=self._phase.value,
                details={"exception_type": type(exc).__name__},
            )
            partial = getattr(self._executor, "partial_outcome", None)
            self._outcome = partial if isinstance(partial, DiscoveryOutcome) else DiscoveryOutcome()
            severity = Severity.WARNING

        if self._outcome.budget_exhausted:
            severity = Severity.WARNING
        await self._emit(
            severity,
            "executor",
            f"Found {len(self._outcome.emails)} raw emails across {len(self._outcome.visited)} pages",
            {
                "emails": len(self._outcome.emails),
                "pages": len(self._outcome.visited),
                "queries_run": self._outcome.queries_run,
                "budget_exhausted": self._outcome.budget_exhausted,
                "cost": self._outcome.cost,
            },
        )
        await self._transition(Phase.VALIDATION)

    async def _phase_validation(self) -> None:
        assert self._entity is not None
        entity = self._entity
        self._candidates = await self._validator.validate(self._outcome.sightings, entity)

        for candidate in self._candidates:
            if candidate.confidence < self._min_email_confidence:
                continue
            await self._store.upsert_email(
                EmailKnowledge(
                    email=candidate.email,
                    registry_number=entity.registry_number,
                    contractor_name=entity.contractor_name,
                    confidence=candidate.confidence,
                    sources=candidate.sources,
                    validated=candidate.validation_signals.mx_record_exists,
                )
            )

        kept = {c.email for c in self._candidates}
        categories: dict[str, bool] = {}
        for sighting in self._outcome.sightings:
            hit = sighting.email in kept
            categories[sighting.source.value] = categories.get(sighting.source.value, False) or hit
        for category, success in categories.items():
            await self._store.record_source_outcome(
                category, entity.registry_number, success, ["email"] if success else []
            )

        await self._emit(
            Severity.SUCCESS if self._candidates else Severity.INFO,
            "validator",
            f"Validated {len(self._candidates)} email candidates",
            {
                "candidates": [
                    {"email": c.email, "confidence": c.confidence, "tier": c.tier}
                    for c in self._candidates
                ]
            },
        )
        await self._transition(Phase.INTERPRETATION)

    async def _phase_interpretation(self) -> None:
        stats = AggregateStats.from_candidates(self._candidates)
        self._interpretation = await self._reasoner.interpret_results(stats)
        await self._emit(
            Severity.SUCCESS,
            "interpreter",
            self._interpretation.summary,
            {
                "key_findings": self._interpretation.key_findings,
                "recommendations": self._interpretation.recommendations,
            },
        )
        await self._transition(Phase.DONE)
