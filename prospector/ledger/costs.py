"""Cost and evidence recorder: attaches money and provenance to external calls.

Append-only. Cost items aggregate into a running job total which, when the
job carries a budget cap, acts as the global spending ceiling.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from prospector.config.settings import CostConfig
from prospector.models import (
    CostCategory,
    CostLineItem,
    Evidence,
    EvidenceKind,
    VisitedSiteLog,
)


class CostRecorder:
    """Running ledger of cost items, evidence and visited sites for one job."""

    def __init__(self, config: CostConfig | None = None, budget_cap: float | None = None) -> None:
        self._config = config or CostConfig()
        self._budget_cap = budget_cap
        self._items: list[CostLineItem] = []
        self._evidence: list[Evidence] = []
        self._visited: list[VisitedSiteLog] = []
        self._total = 0.0
        self._lock = threading.Lock()

    @property
    def config(self) -> CostConfig:
        return self._config

    @property
    def total_cost(self) -> float:
        with self._lock:
            return round(self._total, 6)

    @property
    def budget_cap(self) -> float | None:
        return self._budget_cap

    @property
    def items(self) -> list[CostLineItem]:
        with self._lock:
            return list(self._items)

    @property
    def evidence(self) -> list[Evidence]:
        with self._lock:
            return list(self._evidence)

    @property
    def visited_sites(self) -> list[VisitedSiteLog]:
        with self._lock:
            return list(self._visited)

    def can_spend(self, amount: float) -> bool:
        """True when spending `amount` more stays within the job's budget cap."""
        if self._budget_cap is None:
            return True
        with self._lock:
            return self._total + amount <= self._budget_cap + 1e-9

    def record(
        self,
        category: CostCategory,
        description: str,
        unit_cost: float,
        quantity: int = 1,
        entity_key: str | None = None,
    ) -> CostLineItem:
        item = CostLineItem(
            category=category,
            description=description,
            unit_cost=unit_cost,
            quantity=quantity,
            total_cost=round(unit_cost * quantity, 6),
            currency=self._config.currency,
            entity_key=entity_key,
        )
        with self._lock:
            self._items.append(item)
            self._total += item.total_cost
        return item

    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Evidence:
        evidence = Evidence.snapshot(kind, source, content, url)
        with self._lock:
            self._evidence.append(evidence)
        return evidence

    def log_visit(
        self,
        url: str,
        started_at: datetime,
        success: bool,
        error: str | None = None,
        robots_respected: bool = True,
    ) -> VisitedSiteLog:
        log = VisitedSiteLog(
            url=url,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            success=success,
            error=error,
            robots_respected=robots_respected,
        )
        with self._lock:
            self._visited.append(log)
        return log

    def scoped(self, entity_key: str) -> EntityRecorder:
        """A view that tags costs with `entity_key` and keeps its own trail."""
        return EntityRecorder(self, entity_key)


class EntityRecorder:
    """Per-entity trail. Costs roll up into the job recorder's running total."""

    def __init__(self, parent: CostRecorder, entity_key: str) -> None:
        self._parent = parent
        self._entity_key = entity_key
        self._items: list[CostLineItem] = []
        self._evidence: list[Evidence] = []
        self._visited: list[VisitedSiteLog] = []

    @property
    def entity_key(self) -> str:
        return self._entity_key

    @property
    def config(self) -> CostConfig:
        return self._parent.config

    @property
    def evidence(self) -> list[Evidence]:
        return list(self._evidence)

    @property
    def visited_sites(self) -> list[VisitedSiteLog]:
        return list(self._visited)

    @property
    def items(self) -> list[CostLineItem]:
        return list(self._items)

    @property
    def total_cost(self) -> float:
        """Spend recorded through this trail only, even when another trail shares the key."""
        return round(sum(i.total_cost for i in self._items), 6)

    def can_spend(self, amount: float) -> bool:
        return self._parent.can_spend(amount)

    def record(
        self, category: CostCategory, description: str, unit_cost: float, quantity: int = 1
    ) -> CostLineItem:
        item = self._parent.record(
            category, description, unit_cost, quantity, entity_key=self._entity_key
        )
        self._items.append(item)
        return item

    def add_evidence(
        self, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Evidence:
        evidence = self._parent.add_evidence(kind, source, content, url)
        self._evidence.append(evidence)
        return evidence

    def log_visit(
        self,
        url: str,
        started_at: datetime,
        success: bool,
        error: str | None = None,
        robots_respected: bool = True,
    ) -> VisitedSiteLog:
        log = self._parent.log_visit(url, started_at, success, error, robots_respected)
        self._visited.append(log)
        return log
