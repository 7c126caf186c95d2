"""Gemini reasoner: strategy, queries and interpretation from Vertex AI.

The reasoner provides suggestions without authority: every response is parsed
against a JSON schema and sanitized before the pipeline sees it. Any failure
surfaces as ReasoningError; choosing a fallback is the caller's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from pydantic import ValidationError

from prospector.config.settings import TimeoutConfig, VertexConfig
from prospector.errors import ReasoningError
from prospector.models import (
    APPROACHES,
    AggregateStats,
    DiscoveryStrategy,
    EntityContext,
    ResultInterpretation,
)
from prospector.reasoning.base import MAX_QUERIES
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DEFAULT_MAX_URLS = 10

STRATEGY_PROMPT = (
    "You are a reasoning agent that decides the best strategy to discover a "
    "licensed contractor's contact email address efficiently.\n\n"
    "Available approaches:\n"
    "  registry-first: start with the official registry record and the contractor's "
    "own website, then search\n"
    "  search-first: start with web search, then verify\n"
    "  hybrid: use the registry/website and web search together\n"
    "  registry-only: only use the official registry and website (fastest, most "
    "authoritative)\n\n"
    "Return JSON: {approach, search_queries: [string], max_urls: int 1-20, "
    "priority_sources: [string], reasoning: string, confidence: float 0-1}.\n\n"
)

QUERIES_PROMPT = (
    "Generate 3-5 effective web search queries to find the website, contact page "
    "or email address of the contractor below. Do not use quotes or search "
    "operators other than site:.\n"
    "Return JSON: {queries: [string]}.\n\n"
)

INTERPRETATION_PROMPT = (
    "Write a short, user-friendly interpretation of the email discovery results "
    "below for a sales operator.\n"
    "Return JSON: {summary: 1-2 sentences, key_findings: [string], "
    "recommendations: [string], confidence_explanation: string}.\n\n"
)

STRATEGY_SCHEMA = {
    "type": "object",
    "properties": {
        "approach": {"type": "string", "enum": list(APPROACHES)},
        "search_queries": {"type": "array", "items": {"type": "string"}},
        "max_urls": {"type": "integer"},
        "priority_sources": {"type": "array", "items": {"type": "string"}},
        "reasoning": {"type": "string"},
        "confidence": {"type": "number"},
    },
    "required": ["approach", "search_queries", "reasoning"],
}

QUERIES_SCHEMA = {
    "type": "object",
    "properties": {"queries": {"type": "array", "items": {"type": "string"}}},
    "required": ["queries"],
}

INTERPRETATION_SCHEMA = {
    "type": "object",
    "properties": {
        "summary": {"type": "string"},
        "key_findings": {"type": "array", "items": {"type": "string"}},
        "recommendations": {"type": "array", "items": {"type": "string"}},
        "confidence_explanation": {"type": "string"},
    },
    "required": ["summary"],
}


def _describe_entity(ctx: EntityContext) -> str:
    return (
        f"Contractor: {ctx.contractor_name}\n"
        f"Registry number: {ctx.registry_number}\n"
        f"City: {ctx.city or 'unknown'}\n"
        f"Classification: {ctx.classification or 'general contractor'}\n"
        f"Official website known: {ctx.has_official_website}\n"
        f"Registry data: {json.dumps(ctx.registry_data or {}, default=str)}\n"
    )


def _clean_strings(values: Any, limit: int | None = None) -> list[str]:
    if not isinstance(values, list):
        return []
    cleaned = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    return cleaned[:limit] if limit is not None else cleaned


def sanitize_strategy(data: dict[str, Any], fallback_queries: list[str]) -> DiscoveryStrategy:
    """Coerce a model response into a valid strategy. Raises ReasoningError."""
    if not isinstance(data, dict) or "approach" not in data:
        raise ReasoningError("Strategy response is missing 'approach'")

    approach = data.get("approach")
    if approach not in APPROACHES:
        approach = "registry-first"

    queries = _clean_strings(data.get("search_queries"), MAX_QUERIES) or fallback_queries[
        :MAX_QUERIES
    ]

    max_urls = data.get("max_urls")
    if not isinstance(max_urls, int) or isinstance(max_urls, bool) or not 1 <= max_urls <= 20:
        max_urls = DEFAULT_MAX_URLS

    confidence = data.get("confidence")
    if not isinstance(confidence, (int, float)) or not 0.0 <= confidence <= 1.0:
        confidence = 0.5

    try:
        return DiscoveryStrategy(
            approach=approach,
            search_queries=queries,
            max_urls=max_urls,
            priority_sources=_clean_strings(data.get("priority_sources")),
            reasoning=str(data.get("reasoning") or ""),
            confidence=float(confidence),
        )
    except ValidationError as exc:
        raise ReasoningError(f"Strategy response failed validation: {exc}") from exc


class GeminiReasoner:
    """Vertex AI Gemini client. Stateless apart from the model handle."""

    def __init__(self, config: VertexConfig, timeouts: TimeoutConfig | None = None) -> None:
        self._config = config
        self._timeouts = timeouts or TimeoutConfig()
        self._client: Any = None
        self._initialized = False

    async def initialize(self) -> bool:
        """Initialize the Vertex AI client.

        Returns True on success. The reasoner is optional: the pipeline runs
        rule-based when this returns False.
        """
        if not self._config.project_id:
            return False

        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(
                project=self._config.project_id,
                location=self._config.location,
            )
            self._client = GenerativeModel(self._config.model)
            self._initialized = True
            return True
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.REASONING_INITIALIZATION_FAILED,
                message=str(exc),
                suppressed=True,
            )
            self._initialized = False
            return False

    @property
    def is_available(self) -> bool:
        return self._initialized and self._client is not None

    async def _generate(
        self, prompt: str, schema: dict[str, Any], temperature: float
    ) -> dict[str, Any]:
        if not self.is_available:
            raise ReasoningError("Reasoning backend is not initialized")

        from vertexai.generative_models import GenerationConfig

        try:
            response = await asyncio.wait_for(
                self._client.generate_content_async(
                    prompt,
                    generation_config=GenerationConfig(
                        temperature=temperature,
                        max_output_tokens=self._config.max_output_tokens,
                        response_mime_type="application/json",
                        response_schema=schema,
                    ),
                ),
                timeout=self._timeouts.reasoning_timeout_s,
            )
            text = response.text
        except asyncio.TimeoutError as exc:
            raise ReasoningError("Reasoning backend timed out") from exc
        except Exception as exc:
            raise ReasoningError(f"Reasoning backend call failed: {exc}") from exc

        if not text or not text.strip():
            raise ReasoningError("Empty response from reasoning backend")
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ReasoningError(f"Malformed JSON from reasoning backend: {exc}") from exc
        if not isinstance(data, dict):
            raise ReasoningError("Reasoning backend returned a non-object response")
        return data

    async def decide_strategy(self, ctx: EntityContext) -> DiscoveryStrategy:
        data = await self._generate(
            STRATEGY_PROMPT + _describe_entity(ctx) + "\nDecide the best discovery strategy.",
            STRATEGY_SCHEMA,
            self._config.strategy_temperature,
        )
        return sanitize_strategy(data, fallback_queries=[])

    async def generate_queries(self, ctx: EntityContext) -> list[str]:
        data = await self._generate(
            QUERIES_PROMPT + _describe_entity(ctx),
            QUERIES_SCHEMA,
            self._config.queries_temperature,
        )
        queries = _clean_strings(data.get("queries"), MAX_QUERIES)
        if not queries:
            raise ReasoningError("Reasoning backend returned no queries")
        return queries

    async def interpret_results(self, stats: AggregateStats) -> ResultInterpretation:
        data = await self._generate(
            INTERPRETATION_PROMPT
            + (
                f"Emails found: {stats.emails_found}\n"
                f"Confidence breakdown: {stats.high_confidence_count} high, "
                f"{stats.medium_confidence_count} medium, {stats.low_confidence_count} low\n"
                f"Sources: {', '.join(stats.sources) or 'none'}\n"
                f"Average confidence: {stats.average_confidence:.1f}/100\n"
            ),
            INTERPRETATION_SCHEMA,
            self._config.interpretation_temperature,
        )
        summary = data.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise ReasoningError("Interpretation response is missing 'summary'")
        return ResultInterpretation(
            summary=summary.strip(),
            key_findings=_clean_strings(data.get("key_findings")),
            recommendations=_clean_strings(data.get("recommendations")),
            confidence_explanation=str(data.get("confidence_explanation") or ""),
        )
