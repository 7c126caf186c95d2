"""Per-entity budget ledger for metered external calls.

A call is recorded BEFORE the network request is issued, reserving its slot,
and updated with the real result count afterwards. Failed, zero-result and
cancelled calls all count against the budget.

The ledger is owned by a job and passed by reference to every stage. Each
normalized entity key has its own lock so unrelated entities never serialize
on one another.
"""

from __future__ import annotations

import re
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from types import TracebackType

from prospector.errors import BudgetExceededError

UNKNOWN_KEY = "unknown"
DEFAULT_MAX_CALLS = 10
DEFAULT_HISTORY_LIMIT = 100

_NON_DIGITS = re.compile(r"[^0-9]")


@dataclass
class CallRecord:
    """One reserved metered call."""

    timestamp: datetime
    query: str
    results: int


@dataclass(frozen=True)
class BudgetStats:
    total: int
    remaining: int
    max: int
    avg_results: float
    success_count: int


class _Entry:
    __slots__ = ("lock", "count", "history")

    def __init__(self, history_limit: int) -> None:
        self.lock = threading.Lock()
        self.count = 0
        self.history: deque[CallRecord] = deque(maxlen=history_limit)


def normalize_key(entity_key: str | None) -> str:
    """Strip non-digits from a registry number; empty input maps to 'unknown'."""
    if not entity_key:
        return UNKNOWN_KEY
    stripped = entity_key.strip()
    normalized = _NON_DIGITS.sub("", stripped) or stripped
    return normalized or UNKNOWN_KEY


class BudgetLedger:
    """Call counter and bounded history per normalized entity key."""

    def __init__(
        self,
        max_calls: int = DEFAULT_MAX_CALLS,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        if max_calls < 0:
            raise ValueError("max_calls must be >= 0")
        self._max_calls = max_calls
        self._history_limit = history_limit
        self._entries: dict[str, _Entry] = {}
        self._guard = threading.Lock()

    @property
    def max_calls(self) -> int:
        return self._max_calls

    def set_max_calls(self, max_calls: int) -> None:
        if max_calls < 0:
            raise ValueError("max_calls must be >= 0")
        self._max_calls = max_calls

    def _entry(self, entity_key: str | None) -> _Entry:
        key = normalize_key(entity_key)
        entry = self._entries.get(key)
        if entry is None:
            with self._guard:
                entry = self._entries.setdefault(key, _Entry(self._history_limit))
        return entry

    # --- Contract ---

    def can_call(self, entity_key: str | None) -> bool:
        entry = self._entry(entity_key)
        with entry.lock:
            return entry.count < self._max_calls

    def record_call(self, entity_key: str | None, query: str, result_count: int = 0) -> bool:
        """Reserve one call slot. Returns False, mutating nothing, when exhausted."""
        return self._append(entity_key, query, result_count) is not None

    def _append(self, entity_key: str | None, query: str, result_count: int) -> CallRecord | None:
        entry = self._entry(entity_key)
        with entry.lock:
            if entry.count >= self._max_calls:
                return None
            entry.count += 1
            record = CallRecord(
                timestamp=datetime.now(timezone.utc), query=query, results=result_count
            )
            entry.history.append(record)
            return record

    def _settle(self, entity_key: str | None, record: CallRecord, result_count: int) -> None:
        entry = self._entry(entity_key)
        with entry.lock:
            record.results = result_count

    def update_last_call_result(self, entity_key: str | None, result_count: int) -> None:
        entry = self._entry(entity_key)
        with entry.lock:
            if entry.history:
                entry.history[-1].results = result_count

    def remaining(self, entity_key: str | None) -> int:
        entry = self._entry(entity_key)
        with entry.lock:
            return max(0, self._max_calls - entry.count)

    def call_count(self, entity_key: str | None) -> int:
        entry = self._entry(entity_key)
        with entry.lock:
            return entry.count

    def history(self, entity_key: str | None) -> list[CallRecord]:
        entry = self._entry(entity_key)
        with entry.lock:
            return list(entry.history)

    def stats(self, entity_key: str | None) -> BudgetStats:
        entry = self._entry(entity_key)
        with entry.lock:
            history = list(entry.history)
            total = entry.count
        average = sum(h.results for h in history) / len(history) if history else 0.0
        return BudgetStats(
            total=total,
            remaining=max(0, self._max_calls - total),
            max=self._max_calls,
            avg_results=round(average, 1),
            success_count=sum(1 for h in history if h.results > 0),
        )

    def reset(self, entity_key: str | None) -> None:
        key = normalize_key(entity_key)
        with self._guard:
            self._entries.pop(key, None)

    def reset_all(self) -> None:
        with self._guard:
            self._entries.clear()

    def reserve(self, entity_key: str | None, query: str) -> CallReservation:
        """Reserve a slot for the duration of one request.

        Usage::

            with ledger.reserve(key, query) as call:
                results = await backend.fetch(query)
                call.results = len(results)
        """
        return CallReservation(self, entity_key, query)


class CallReservation:
    """Context manager finalizing a reserved call even on error or cancellation."""

    def __init__(self, ledger: BudgetLedger, entity_key: str | None, query: str) -> None:
        self._ledger = ledger
        self._entity_key = entity_key
        self._query = query
        self._record: CallRecord | None = None
        self.results = 0

    def __enter__(self) -> CallReservation:
        self._record = self._ledger._append(self._entity_key, self._query, 0)
        if self._record is None:
            raise BudgetExceededError(
                normalize_key(self._entity_key), self._ledger.stats(self._entity_key)
            )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._record is not None:
            self._ledger._settle(self._entity_key, self._record, self.results)
