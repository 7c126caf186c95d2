"""Pipeline data models: inputs, resolved entities, candidates and provenance."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


HIGH_CONFIDENCE = 80
MEDIUM_CONFIDENCE = 50


class SourceCategory(str, Enum):
    """Where a link, page or email came from."""

    REGISTRY = "registry"
    OFFICIAL_WEBSITE = "official_website"
    WEB = "web"
    PROFESSIONAL_NETWORK = "professional_network"
    SOCIAL = "social"
    DIRECTORY = "directory"

    @property
    def authoritative(self) -> bool:
        return self in (SourceCategory.REGISTRY, SourceCategory.OFFICIAL_WEBSITE)


class ContractorInput(BaseModel):
    """One row of a submitted batch. Never mutated after submission."""

    registry_number: str
    contractor_name: str
    city: str | None = None
    phone: str | None = None
    website: str | None = None
    classification: str | None = None
    license_status: str | None = None
    row_index: int = 0

    model_config = {"frozen": True}


class JobPreferences(BaseModel):
    """Caller preferences attached to a job submission."""

    use_llm: bool = True
    excluded_domains: list[str] = Field(default_factory=list)
    allowed_domains: list[str] = Field(default_factory=list)
    budget_cap: float | None = Field(default=None, ge=0.0)
    strictness: Literal["strict", "moderate", "lenient"] = "moderate"
    max_calls_per_entity: int | None = Field(default=None, ge=0)

    model_config = {"frozen": True}


class Entity(BaseModel):
    """The canonical record resolved for one input row."""

    id: str = Field(default_factory=lambda: f"entity_{uuid.uuid4().hex[:12]}")
    registry_number: str
    contractor_name: str
    business_name: str | None = None
    address: str | None = None
    phone: str | None = None
    classification: str | None = None
    license_status: str | None = None
    official_website: str | None = None
    source: str = "input"

    @property
    def has_official_website(self) -> bool:
        return bool(self.official_website)

    @property
    def city(self) -> str | None:
        """Best-effort city from the address: first purely alphabetic comma part."""
        if not self.address:
            return None
        parts = [part.strip() for part in self.address.split(",") if part.strip()]
        for part in parts:
            if part.replace(" ", "").isalpha():
                return part
        return parts[0] if parts else None


class ValidationSignals(BaseModel):
    """Per-candidate verification signals."""

    mx_record_exists: bool = False
    smtp_check: bool = False
    format_valid: bool = False
    domain_valid: bool = False
    source_authoritative: bool = False
    multiple_sources: bool = False

    model_config = {"frozen": True}


class EmailSighting(BaseModel):
    """A raw email-shaped string with the place it was seen."""

    email: str
    source: SourceCategory
    source_url: str

    model_config = {"frozen": True}


class EmailCandidate(BaseModel):
    """A discovered, scored email. No mutation after validation."""

    email: str
    source: SourceCategory
    source_url: str
    confidence: int = Field(ge=0, le=100)
    rationale: str
    validation_signals: ValidationSignals
    sources: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def tier(self) -> Literal["high", "medium", "low"]:
        if self.confidence >= HIGH_CONFIDENCE:
            return "high"
        if self.confidence >= MEDIUM_CONFIDENCE:
            return "medium"
        return "low"


class EvidenceKind(str, Enum):
    REGISTRY_RECORD = "registry_record"
    WEBSITE = "website"
    SEARCH_RESULT = "search_result"
    EMAIL_EXTRACTION = "email_extraction"
    VALIDATION = "validation"
    REASONING = "reasoning"


MAX_EVIDENCE_CONTENT = 4096


class Evidence(BaseModel):
    """Immutable, timestamped provenance for a pipeline step's output."""

    kind: EvidenceKind
    source: str
    content: str
    url: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @classmethod
    def snapshot(
        cls, kind: EvidenceKind, source: str, content: str, url: str | None = None
    ) -> Evidence:
        """Build evidence with the content snapshot truncated to a bounded size."""
        return cls(kind=kind, source=source, content=content[:MAX_EVIDENCE_CONTENT], url=url)


class VisitedSiteLog(BaseModel):
    """One record per externally fetched page."""

    url: str
    started_at: datetime
    completed_at: datetime | None = None
    success: bool
    error: str | None = None
    robots_respected: bool = True

    model_config = {"frozen": True}


class CostCategory(str, Enum):
    SEARCH = "search"
    SCRAPE = "scrape"
    VALIDATION = "validation"
    ENRICHMENT = "enrichment"
    REASONING = "reasoning"


class CostLineItem(BaseModel):
    """One billable or attributable action."""

    category: CostCategory
    description: str
    unit_cost: float = Field(ge=0.0)
    quantity: int = Field(ge=0, default=1)
    total_cost: float = Field(ge=0.0)
    currency: str = "USD"
    timestamp: datetime = Field(default_factory=_utcnow)
    entity_key: str | None = None

    model_config = {"frozen": True}


Approach = Literal["registry-first", "search-first", "hybrid", "registry-only"]
APPROACHES: tuple[str, ...] = ("registry-first", "search-first", "hybrid", "registry-only")


class DiscoveryStrategy(BaseModel):
    """The plan chosen for one entity."""

    approach: Approach
    search_queries: list[str] = Field(default_factory=list)
    max_urls: int = Field(ge=1, le=20, default=10)
    priority_sources: list[str] = Field(default_factory=list)
    reasoning: str = ""
    confidence: float = Field(ge=0.0, le=1.0, default=0.5)

    @property
    def uses_official_site(self) -> bool:
        return self.approach in ("registry-first", "registry-only", "hybrid")

    @property
    def uses_search(self) -> bool:
        return self.approach in ("search-first", "hybrid")


class ResultInterpretation(BaseModel):
    """Human-readable explanation of an entity's results."""

    summary: str
    key_findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence_explanation: str = ""


class EntityContext(BaseModel):
    """What the reasoner knows about an entity when planning."""

    contractor_name: str
    registry_number: str
    city: str | None = None
    classification: str | None = None
    has_official_website: bool = False
    registry_data: dict[str, Any] | None = None

    @classmethod
    def from_entity(cls, entity: Entity, fallback_city: str | None = None) -> EntityContext:
        return cls(
            contractor_name=entity.contractor_name,
            registry_number=entity.registry_number,
            city=entity.city or fallback_city,
            classification=entity.classification,
            has_official_website=entity.has_official_website,
            registry_data={
                "business_name": entity.business_name,
                "website": entity.official_website,
                "address": entity.address,
                "phone": entity.phone,
                "classification": entity.classification,
                "license_status": entity.license_status,
            },
        )


class AggregateStats(BaseModel):
    """Aggregate result statistics handed to the interpreter."""

    emails_found: int = 0
    confidence_scores: list[int] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    high_confidence_count: int = 0
    medium_confidence_count: int = 0
    low_confidence_count: int = 0

    @property
    def average_confidence(self) -> float:
        if not self.confidence_scores:
            return 0.0
        return sum(self.confidence_scores) / len(self.confidence_scores)

    @classmethod
    def from_candidates(cls, candidates: list[EmailCandidate]) -> AggregateStats:
        scores = [c.confidence for c in candidates]
        sources: list[str] = []
        for candidate in candidates:
            if candidate.source.value not in sources:
                sources.append(candidate.source.value)
        return cls(
            emails_found=len(candidates),
            confidence_scores=scores,
            sources=sources,
            high_confidence_count=sum(1 for s in scores if s >= HIGH_CONFIDENCE),
            medium_confidence_count=sum(
                1 for s in scores if MEDIUM_CONFIDENCE <= s < HIGH_CONFIDENCE
            ),
            low_confidence_count=sum(1 for s in scores if s < MEDIUM_CONFIDENCE),
        )
