"""Exception taxonomy for the discovery pipeline.

Only RegistryNotFoundError at initial resolution is a hard per-entity failure.
Every other error degrades result quality but the entity still completes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prospector.ledger.budget import BudgetStats


class ProspectorError(Exception):
    """Base class for all pipeline errors."""


class RegistryNotFoundError(ProspectorError):
    """The registry has no usable record for the requested number."""

    def __init__(self, registry_number: str, message: str | None = None) -> None:
        self.registry_number = registry_number
        super().__init__(message or f"Registry record {registry_number!r} not found")


class BudgetExceededError(ProspectorError):
    """The budget ledger refused a metered call."""

    def __init__(self, entity_key: str, stats: BudgetStats) -> None:
        self.entity_key = entity_key
        self.stats = stats
        super().__init__(
            f"API call limit reached for {entity_key}: "
            f"{stats.total}/{stats.max} calls used"
        )


class TransientFetchError(ProspectorError):
    """A single fetch failed (timeout, DNS, malformed page). Never retried verbatim."""

    def __init__(self, message: str, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


class ReasoningError(ProspectorError):
    """The reasoning backend failed or returned unusable structured output."""


class PersistenceError(ProspectorError):
    """A knowledge store write failed."""
