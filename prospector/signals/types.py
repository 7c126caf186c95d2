"""Progress event definitions for the discovery pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class ProgressEvent(BaseModel):
    """An immutable, human-readable progress event emitted during a job.

    Events are append-only: the channel assigns the sequence number and the
    event is never modified after emission.
    """

    sequence: int = Field(description="Monotonic sequence number within the job")
    job_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    severity: Severity = Severity.INFO
    component: str
    summary: str
    detail: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
