"""Local registry dataset: a CSV export of the licensing board's records."""

from __future__ import annotations

import csv
import difflib
import logging
import re
from pathlib import Path

from prospector.registry.types import RegistryRecord
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "registry_number": ("registry_number", "roc_number", "license_number", "license_no", "roc"),
    "contractor_name": ("contractor_name", "name", "qualifying_party"),
    "business_name": ("business_name", "company", "dba", "doing_business_as"),
    "website": ("website", "url", "web"),
    "address": ("address", "street_address", "location"),
    "phone": ("phone", "telephone", "phone_number"),
    "classification": ("classification", "class", "license_type"),
    "license_status": ("license_status", "status"),
}

_NON_DIGITS = re.compile(r"[^0-9]")


def _header_key(header: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", header.strip().lower()).strip("_")


def number_key(value: str) -> str:
    stripped = value.strip()
    return _NON_DIGITS.sub("", stripped) or stripped.lower()


class RegistryDataset:
    """In-memory index over a registry CSV, loaded on first use."""

    def __init__(self, path: Path | None, fuzzy_threshold: float = 0.85) -> None:
        self._path = path
        self._fuzzy_threshold = fuzzy_threshold
        self._records: list[RegistryRecord] | None = None
        self._by_number: dict[str, RegistryRecord] = {}

    @classmethod
    def from_records(
        cls, records: list[RegistryRecord], fuzzy_threshold: float = 0.85
    ) -> RegistryDataset:
        dataset = cls(None, fuzzy_threshold)
        dataset._index(records)
        return dataset

    @property
    def configured(self) -> bool:
        return self._path is not None or self._records is not None

    def _index(self, records: list[RegistryRecord]) -> None:
        self._records = records
        self._by_number = {}
        for record in records:
            self._by_number.setdefault(number_key(record.registry_number), record)

    def _load(self) -> list[RegistryRecord]:
        if self._records is not None:
            return self._records
        records: list[RegistryRecord] = []
        if self._path is not None:
            try:
                with open(self._path, newline="", encoding="utf-8-sig") as f:
                    for row in csv.DictReader(f):
                        record = self._parse_row(row)
                        if record is not None:
                            records.append(record)
            except (OSError, csv.Error, UnicodeDecodeError) as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.REGISTRY_DATASET_FAILED,
                    message=str(exc),
                    suppressed=True,
                    details={"path": str(self._path)},
                )
        self._index(records)
        logger.info(
            "registry_dataset_loaded",
            extra={"path": str(self._path), "records": len(records)},
        )
        return records

    @staticmethod
    def _parse_row(row: dict[str, str | None]) -> RegistryRecord | None:
        normalized = {_header_key(k): (v or "").strip() for k, v in row.items() if k}
        values: dict[str, str | None] = {}
        for field, aliases in COLUMN_ALIASES.items():
            values[field] = next((normalized[a] for a in aliases if normalized.get(a)), None)
        if not values["registry_number"]:
            return None
        return RegistryRecord(**values)

    def find(self, registry_number: str, name: str | None = None) -> RegistryRecord | None:
        """Exact number match, else a record whose name contains `name`, else a close name match."""
        records = self._load()
        if not records:
            return None

        if registry_number.strip():
            exact = self._by_number.get(number_key(registry_number))
            if exact is not None:
                return exact

        wanted = (name or "").strip().lower()
        if not wanted:
            return None

        for record in records:
            candidate = (record.contractor_name or "").lower()
            if candidate and wanted in candidate:
                return record

        best: RegistryRecord | None = None
        best_ratio = 0.0
        for record in records:
            candidate = (record.contractor_name or "").lower()
            if not candidate:
                continue
            ratio = difflib.SequenceMatcher(None, wanted, candidate).ratio()
            if ratio > best_ratio:
                best, best_ratio = record, ratio
        if best is not None and best_ratio >= self._fuzzy_threshold:
            return best
        return None
