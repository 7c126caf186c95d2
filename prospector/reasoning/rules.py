"""Deterministic reasoner. Always available, never raises."""

from __future__ import annotations

from prospector.models import (
    HIGH_CONFIDENCE,
    MEDIUM_CONFIDENCE,
    AggregateStats,
    DiscoveryStrategy,
    EntityContext,
    ResultInterpretation,
)

DEFAULT_MAX_URLS = 10
RULE_CONFIDENCE = 0.8


class RuleBasedReasoner:
    """Picks a plan from what the registry told us about the entity."""

    def __init__(self, region: str = "Arizona", registry_label: str = "Arizona ROC") -> None:
        self._region = region
        self._registry_label = registry_label

    def default_queries(self, ctx: EntityContext) -> list[str]:
        name = ctx.contractor_name.strip()
        city = (ctx.city or "").strip() or self._region
        queries = [
            f"{name} contact email {city}",
            f"{name} website {city}",
            f"{self._registry_label} {ctx.registry_number} contractor",
        ]
        if city != self._region:
            queries.append(f"{name} {city} contractor")
        return queries

    def strategy_for(self, ctx: EntityContext) -> DiscoveryStrategy:
        if ctx.has_official_website:
            return DiscoveryStrategy(
                approach="registry-first",
                search_queries=self.default_queries(ctx),
                max_urls=DEFAULT_MAX_URLS,
                priority_sources=["registry", "official-website"],
                reasoning="Official website available from the registry: "
                "prioritize the authoritative source",
                confidence=RULE_CONFIDENCE,
            )
        return DiscoveryStrategy(
            approach="search-first",
            search_queries=self.default_queries(ctx),
            max_urls=DEFAULT_MAX_URLS,
            priority_sources=["search", "directories"],
            reasoning="No official website: use web search to discover contact information",
            confidence=RULE_CONFIDENCE,
        )

    def interpretation_for(self, stats: AggregateStats) -> ResultInterpretation:
        average = stats.average_confidence
        plural = "es" if stats.emails_found != 1 else ""
        if average >= HIGH_CONFIDENCE:
            explanation = "High confidence due to multiple authoritative sources"
        elif average >= MEDIUM_CONFIDENCE:
            explanation = "Medium confidence: some sources verified"
        else:
            explanation = "Low confidence: limited source verification"

        return ResultInterpretation(
            summary=(
                f"Found {stats.emails_found} email address{plural} with "
                f"{stats.high_confidence_count} high confidence, "
                f"{stats.medium_confidence_count} medium, and "
                f"{stats.low_confidence_count} low confidence."
            ),
            key_findings=[
                f"Average confidence score: {average:.1f}/100",
                f"Sources: {', '.join(stats.sources) if stats.sources else 'none'}",
                (
                    f"{stats.high_confidence_count} high-confidence emails found"
                    if stats.high_confidence_count
                    else "No high-confidence emails"
                ),
            ],
            recommendations=[
                (
                    "High-confidence emails are ready to use"
                    if stats.high_confidence_count
                    else "Consider manual verification for medium-confidence emails"
                ),
                (
                    "Multiple sources confirm email addresses"
                    if len(stats.sources) > 1
                    else "Single source: consider additional verification"
                ),
            ],
            confidence_explanation=explanation,
        )

    async def decide_strategy(self, ctx: EntityContext) -> DiscoveryStrategy:
        return self.strategy_for(ctx)

    async def generate_queries(self, ctx: EntityContext) -> list[str]:
        return self.default_queries(ctx)

    async def interpret_results(self, stats: AggregateStats) -> ResultInterpretation:
        return self.interpretation_for(stats)
