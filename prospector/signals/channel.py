"""Progress channel: streams a job's events to any number of readers.

Every event is:
- Assigned a monotonic sequence number
- Persisted to a JSONL ledger in append-only mode
- Delivered to each subscriber's bounded queue, dropping that subscriber's
  oldest event when it falls behind

Emission never awaits a subscriber, so a slow WebSocket cannot stall a job.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator

from prospector.signals.types import ProgressEvent, Severity
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()


class Subscription:
    """One reader's view of the channel. Async-iterable until the channel closes."""

    def __init__(self, channel: ProgressChannel, maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: Any) -> None:
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(item)

    def close(self) -> None:
        """Detach from the channel. Pending iteration ends."""
        if self._closed:
            return
        self._closed = True
        self._channel.unsubscribe(self)
        self._offer(_CLOSED)

    async def get(self) -> ProgressEvent | None:
        """Next event, or None once the channel or subscription is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class ProgressChannel:
    """Emits, persists and fans out progress events for a single job."""

    def __init__(
        self,
        job_id: str,
        ledger_path: Path | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._job_id = job_id
        self._sequence = 0
        self._ledger_path = ledger_path
        self._queue_size = queue_size
        self._subscribers: list[Subscription] = []
        self._events: list[ProgressEvent] = []
        self._closed = False
        self._lock = asyncio.Lock()

        if self._ledger_path:
            self._ledger_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def events(self) -> list[ProgressEvent]:
        return list(self._events)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, replay: bool = True) -> Subscription:
        """Register a reader. With `replay`, already emitted events are queued first."""
        subscription = Subscription(self, self._queue_size)
        if replay:
            for event in self._events:
                subscription._offer(event)
        if self._closed:
            subscription._offer(_CLOSED)
        else:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers = [s for s in self._subscribers if s is not subscription]

    async def emit(
        self,
        component: str,
        summary: str,
        severity: Severity = Severity.INFO,
        detail: dict[str, Any] | None = None,
    ) -> ProgressEvent:
        """Emit an event. This is the only way events are created."""
        async with self._lock:
            self._sequence += 1
            event = ProgressEvent(
                sequence=self._sequence,
                job_id=self._job_id,
                severity=severity,
                component=component,
                summary=summary,
                detail=detail or {},
            )
            self._events.append(event)

        if self._ledger_path:
            self._persist(event)

        for subscriber in list(self._subscribers):
            subscriber._offer(event)

        logger.debug(
            "progress_event",
            extra={
                "job_id": self._job_id,
                "component": component,
                "severity": severity.value,
                "summary": summary,
            },
        )
        return event

    def _persist(self, event: ProgressEvent) -> None:
        try:
            with open(self._ledger_path, "a") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.PROGRESS_LEDGER_WRITE_FAILED,
                message=str(exc),
                suppressed=True,
                job_id=self._job_id,
            )

    def close(self) -> None:
        """End every subscription. Further events are still recorded but not delivered."""
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            subscriber._offer(_CLOSED)

    @staticmethod
    def load_ledger(ledger_path: Path) -> list[ProgressEvent]:
        """Load all events from a JSONL ledger file."""
        events = []
        if ledger_path.exists():
            with open(ledger_path) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        events.append(ProgressEvent.model_validate_json(line))
        return events
