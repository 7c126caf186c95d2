"""Knowledge store: durable cache of captured contractors and discovered emails.

Only successful captures are stored: an empty contractor capture or a
low-confidence email never reaches disk. A contractor record younger than the
staleness threshold lets the registry lookup skip the live portal entirely.

Persistence is a single JSON document rewritten atomically (temp file, then
rename). Write failures are logged and swallowed: caching is an optimization,
never a correctness requirement.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from prospector.errors import PersistenceError
from prospector.telemetry.errors import ErrorCode, emit_structured_error
from prospector.validation.syntax import is_valid_email_format

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(days=30)
DEFAULT_MIN_EMAIL_CONFIDENCE = 30

ENRICHMENT_FIELDS = (
    "business_name",
    "website",
    "address",
    "phone",
    "classification",
    "license_status",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContractorKnowledge(BaseModel):
    """A cached contractor capture."""

    registry_number: str
    contractor_name: str = ""
    business_name: str | None = None
    website: str | None = None
    address: str | None = None
    phone: str | None = None
    classification: str | None = None
    license_status: str | None = None
    source: str = "unknown"
    last_verified: datetime = Field(default_factory=_utcnow)

    def has_enrichment(self) -> bool:
        return any(getattr(self, name) for name in ENRICHMENT_FIELDS)


class EmailKnowledge(BaseModel):
    """A cached email discovery, keyed by (email, registry_number)."""

    email: str
    registry_number: str
    contractor_name: str = ""
    confidence: int = Field(ge=0, le=100)
    sources: list[str] = Field(default_factory=list)
    validated: bool = False
    last_verified: datetime = Field(default_factory=_utcnow)


class SourceOutcome(BaseModel):
    """Which sources produced data for which registry numbers."""

    source: str
    registry_number: str
    success: bool
    data_found: list[str] = Field(default_factory=list)
    recorded_at: datetime = Field(default_factory=_utcnow)


class _Document(BaseModel):
    contractors: dict[str, ContractorKnowledge] = Field(default_factory=dict)
    emails: dict[str, EmailKnowledge] = Field(default_factory=dict)
    sources: list[SourceOutcome] = Field(default_factory=list)


def _email_key(email: str, registry_number: str) -> str:
    return f"{registry_number}|{email.lower()}"


class KnowledgeStore:
    """File-backed knowledge cache shared by every entity worker."""

    def __init__(
        self,
        path: Path | None = None,
        staleness: timedelta = DEFAULT_STALENESS,
        min_email_confidence: int = DEFAULT_MIN_EMAIL_CONFIDENCE,
        max_source_outcomes: int = 5000,
    ) -> None:
        self._path = path
        self._staleness = staleness
        self._min_email_confidence = min_email_confidence
        self._max_source_outcomes = max_source_outcomes
        self._lock = asyncio.Lock()
        self._doc = self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def staleness(self) -> timedelta:
        return self._staleness

    def _load(self) -> _Document:
        if self._path is None or not self._path.exists():
            return _Document()
        try:
            return _Document.model_validate_json(self._path.read_text())
        except (OSError, ValidationError, ValueError) as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.KNOWLEDGE_READ_FAILED,
                message=str(exc),
                suppressed=True,
                details={"path": str(self._path)},
            )
            return _Document()

    def _write(self, text: str) -> None:
        """Atomically replace the document file. Raises PersistenceError."""
        assert self._path is not None
        temp_path = self._path.with_suffix(".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(text)
            temp_path.replace(self._path)
        except OSError as exc:
            if temp_path.exists():
                temp_path.unlink()
            raise PersistenceError(f"Failed to write knowledge store: {exc}") from exc

    async def _persist(self, registry_number: str) -> None:
        """Snapshot under the caller's lock, write off the event loop."""
        if self._path is None:
            return
        text = self._doc.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write, text)
        except PersistenceError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.KNOWLEDGE_WRITE_FAILED,
                message=str(exc),
                suppressed=True,
                entity_key=registry_number,
            )

    # --- Contractors ---

    def is_fresh(self, record: ContractorKnowledge, now: datetime | None = None) -> bool:
        """A record is usable without re-verification while younger than the threshold."""
        now = now or _utcnow()
        last_verified = record.last_verified
        if last_verified.tzinfo is None:
            last_verified = last_verified.replace(tzinfo=timezone.utc)
        return now - last_verified < self._staleness

    async def get_contractor(self, registry_number: str) -> ContractorKnowledge | None:
        record = self._doc.contractors.get(registry_number)
        return record.model_copy() if record else None

    async def upsert_contractor(self, data: ContractorKnowledge) -> bool:
        """Store a capture. No-op when it has neither a name nor any enrichment field."""
        if not data.contractor_name.strip() and not data.has_enrichment():
            return False
        if not data.registry_number.strip():
            return False

        async with self._lock:
            existing = self._doc.contractors.get(data.registry_number)
            record = data.model_copy(update={"last_verified": _utcnow()})
            if existing is not None:
                # Keep previously captured fields the new capture does not carry.
                merged = {
                    name: getattr(record, name) or getattr(existing, name)
                    for name in ENRICHMENT_FIELDS
                }
                if not record.contractor_name.strip():
                    merged["contractor_name"] = existing.contractor_name
                record = record.model_copy(update=merged)
            self._doc.contractors[data.registry_number] = record
            await self._persist(data.registry_number)

        logger.info(
            "contractor_knowledge_stored",
            extra={
                "registry_number": data.registry_number,
                "source": data.source,
                "updated": existing is not None,
            },
        )
        return True

    # --- Emails ---

    async def get_emails(self, registry_number: str) -> list[EmailKnowledge]:
        """Stored emails for a registry number, best confidence first, then newest."""
        records = [
            r.model_copy()
            for r in self._doc.emails.values()
            if r.registry_number == registry_number
        ]
        records.sort(key=lambda r: (r.confidence, r.last_verified), reverse=True)
        return records

    async def upsert_email(self, data: EmailKnowledge) -> bool:
        """Store only a valid email above the floor and above any stored confidence."""
        if not is_valid_email_format(data.email):
            return False
        if data.confidence < self._min_email_confidence:
            return False

        key = _email_key(data.email, data.registry_number)
        async with self._lock:
            existing = self._doc.emails.get(key)
            if existing is not None and data.confidence <= existing.confidence:
                return False
            self._doc.emails[key] = data.model_copy(
                update={"email": data.email.lower(), "last_verified": _utcnow()}
            )
            await self._persist(data.registry_number)
        return True

    # --- Source effectiveness ---

    async def record_source_outcome(
        self,
        source: str,
        registry_number: str,
        success: bool,
        data_found: list[str] | None = None,
    ) -> None:
        async with self._lock:
            self._doc.sources.append(
                SourceOutcome(
                    source=source,
                    registry_number=registry_number,
                    success=success,
                    data_found=data_found or [],
                )
            )
            overflow = len(self._doc.sources) - self._max_source_outcomes
            if overflow > 0:
                del self._doc.sources[:overflow]
            await self._persist(registry_number)

    def source_stats(self) -> dict[str, dict[str, int]]:
        """Attempts and successes per source."""
        stats: dict[str, dict[str, int]] = {}
        for outcome in self._doc.sources:
            entry = stats.setdefault(outcome.source, {"attempts": 0, "successes": 0})
            entry["attempts"] += 1
            if outcome.success:
                entry["successes"] += 1
        return stats

    def dump(self) -> dict:
        """Raw document (debugging and tests)."""
        return json.loads(self._doc.model_dump_json())
