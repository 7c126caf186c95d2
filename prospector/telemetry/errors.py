"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    REASONING_INITIALIZATION_FAILED = "REASONING_INITIALIZATION_FAILED"
    REASONING_FAILED = "REASONING_FAILED"
    REGISTRY_DATASET_FAILED = "REGISTRY_DATASET_FAILED"
    REGISTRY_PORTAL_FAILED = "REGISTRY_PORTAL_FAILED"
    KNOWLEDGE_WRITE_FAILED = "KNOWLEDGE_WRITE_FAILED"
    KNOWLEDGE_READ_FAILED = "KNOWLEDGE_READ_FAILED"
    SEARCH_VARIATION_FAILED = "SEARCH_VARIATION_FAILED"
    DISCOVERY_DEGRADED = "DISCOVERY_DEGRADED"
    PAGE_FETCH_FAILED = "PAGE_FETCH_FAILED"
    DNS_LOOKUP_FAILED = "DNS_LOOKUP_FAILED"
    SMTP_PROBE_FAILED = "SMTP_PROBE_FAILED"
    PROGRESS_LEDGER_WRITE_FAILED = "PROGRESS_LEDGER_WRITE_FAILED"
    API_WEBSOCKET_SEND_FAILED = "API_WEBSOCKET_SEND_FAILED"
    BROWSER_CLEANUP_FAILED = "BROWSER_CLEANUP_FAILED"
    ENTITY_RUN_CRASHED = "ENTITY_RUN_CRASHED"
    JOB_RUN_FAILED = "JOB_RUN_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    job_id: str | None = None,
    entity_key: str | None = None,
    phase: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    log = logger.warning if suppressed else logger.error
    log(
        "prospector_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "job_id": job_id,
            "entity_key": entity_key,
            "phase": phase,
            "details": details or {},
        },
    )
