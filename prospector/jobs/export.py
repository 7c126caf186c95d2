"""Tabular export of job results."""

from __future__ import annotations

import csv
import io
from typing import Any

from prospector.orchestrator.engine import EntityRunResult

EXPORT_COLUMNS = (
    "Contractor Name",
    "Email",
    "Registry Number",
    "Phone",
    "Business Name",
    "Address",
    "Website",
    "Classification",
    "License Status",
    "Confidence",
    "Sources",
)

NOT_FOUND = "Not Found"


def _entity_columns(result: EntityRunResult) -> dict[str, Any]:
    entity = result.entity
    source = result.input
    if entity is None:
        return {
            "Contractor Name": source.contractor_name,
            "Registry Number": source.registry_number,
            "Phone": source.phone or "",
            "Business Name": "",
            "Address": source.city or "",
            "Website": source.website or "",
            "Classification": source.classification or "",
            "License Status": source.license_status or "",
        }
    return {
        "Contractor Name": entity.contractor_name,
        "Registry Number": entity.registry_number,
        "Phone": entity.phone or "",
        "Business Name": entity.business_name or "",
        "Address": entity.address or "",
        "Website": entity.official_website or "",
        "Classification": entity.classification or "",
        "License Status": entity.license_status or "",
    }


def export_rows(results: list[EntityRunResult]) -> list[dict[str, Any]]:
    """One row per (entity, candidate); entities without candidates get a placeholder row."""
    rows: list[dict[str, Any]] = []
    for result in sorted(results, key=lambda r: r.input.row_index):
        base = _entity_columns(result)
        if not result.candidates:
            rows.append({**base, "Email": NOT_FOUND, "Confidence": 0, "Sources": ""})
            continue
        for candidate in result.candidates:
            rows.append(
                {
                    **base,
                    "Email": candidate.email,
                    "Confidence": candidate.confidence,
                    "Sources": "; ".join(candidate.sources or [candidate.source_url]),
                }
            )
    return rows


def to_csv(rows: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer, fieldnames=list(EXPORT_COLUMNS), quoting=csv.QUOTE_ALL, lineterminator="\n"
    )
    writer.writeheader()
    for row in rows:
        writer.writerow({column: row.get(column, "") for column in EXPORT_COLUMNS})
    return buffer.getvalue()
