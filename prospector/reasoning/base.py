"""Reasoner protocol shared by the rule-based and model-backed implementations."""

from __future__ import annotations

from typing import Protocol

from prospector.models import AggregateStats, DiscoveryStrategy, EntityContext, ResultInterpretation

MAX_QUERIES = 5


class Reasoner(Protocol):
    async def decide_strategy(self, ctx: EntityContext) -> DiscoveryStrategy: ...

    async def generate_queries(self, ctx: EntityContext) -> list[str]: ...

    async def interpret_results(self, stats: AggregateStats) -> ResultInterpretation: ...
