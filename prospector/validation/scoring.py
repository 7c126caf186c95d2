"""Confidence scoring from validation signals."""

from __future__ import annotations

from typing import Literal

from prospector.models import ValidationSignals

SIGNAL_WEIGHTS: dict[str, int] = {
    "format_valid": 15,
    "domain_valid": 15,
    "mx_record_exists": 20,
    "smtp_check": 10,
    "source_authoritative": 25,
    "multiple_sources": 15,
}

SIGNAL_LABELS: dict[str, str] = {
    "format_valid": "valid format",
    "domain_valid": "domain resolves",
    "mx_record_exists": "MX record present",
    "smtp_check": "mailbox accepted by SMTP",
    "source_authoritative": "authoritative source",
    "multiple_sources": "seen on multiple pages",
}

Strictness = Literal["strict", "moderate", "lenient"]

STRICTNESS_FLOORS: dict[str, int] = {"strict": 50, "moderate": 20, "lenient": 0}


def score_signals(signals: ValidationSignals) -> int:
    """Weighted sum in [0, 100]. An invalid format always scores 0."""
    if not signals.format_valid:
        return 0
    total = sum(weight for name, weight in SIGNAL_WEIGHTS.items() if getattr(signals, name))
    return max(0, min(100, total))


def rationale_for(signals: ValidationSignals) -> str:
    if not signals.format_valid:
        return "Rejected: not a syntactically valid email address"
    passed = [label for name, label in SIGNAL_LABELS.items() if getattr(signals, name)]
    missing = [label for name, label in SIGNAL_LABELS.items() if not getattr(signals, name)]
    text = "Passed: " + ", ".join(passed)
    if missing:
        text += ". Missing: " + ", ".join(missing)
    return text


def strictness_floor(strictness: str) -> int:
    return STRICTNESS_FLOORS.get(strictness, STRICTNESS_FLOORS["moderate"])
