"""Tests for the progress channel."""

import asyncio

import pytest

from prospector.signals.channel import ProgressChannel
from prospector.signals.types import Severity


@pytest.fixture
def tmp_ledger(tmp_path):
    return tmp_path / "jobs" / "job_test" / "events.jsonl"


@pytest.fixture
def channel(tmp_ledger):
    return ProgressChannel(job_id="job_test", ledger_path=tmp_ledger)


class TestEmission:
    @pytest.mark.asyncio
    async def test_emit_creates_event(self, channel):
        event = await channel.emit("registry", "Resolved Acme Plumbing", detail={"source": "cache"})
        assert event.sequence == 1
        assert event.job_id == "job_test"
        assert event.severity == Severity.INFO
        assert event.component == "registry"
        assert event.detail["source"] == "cache"

    @pytest.mark.asyncio
    async def test_monotonic_sequence(self, channel):
        events = [await channel.emit("job", f"step {i}") for i in range(3)]
        assert [e.sequence for e in events] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_concurrent_emits_get_unique_sequences(self, channel):
        events = await asyncio.gather(*(channel.emit("job", str(i)) for i in range(20)))
        assert sorted(e.sequence for e in events) == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_events_are_immutable(self, channel):
        event = await channel.emit("job", "started")
        with pytest.raises(Exception):
            event.summary = "changed"

    @pytest.mark.asyncio
    async def test_persisted_and_reloaded(self, channel, tmp_ledger):
        await channel.emit("job", "started")
        await channel.emit("job", "finished", severity=Severity.SUCCESS)
        assert len(tmp_ledger.read_text().strip().split("\n")) == 2

        loaded = ProgressChannel.load_ledger(tmp_ledger)
        assert [e.summary for e in loaded] == ["started", "finished"]
        assert loaded[1].severity == Severity.SUCCESS

    def test_load_missing_ledger(self, tmp_path):
        assert ProgressChannel.load_ledger(tmp_path / "missing.jsonl") == []


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_subscriber_receives_events_until_close(self, channel):
        subscription = channel.subscribe()
        await channel.emit("job", "one")
        await channel.emit("job", "two")
        channel.close()
        received = [event.summary async for event in subscription]
        assert received == ["one", "two"]

    @pytest.mark.asyncio
    async def test_many_readers(self, channel):
        first = channel.subscribe()
        second = channel.subscribe()
        await channel.emit("job", "hello")
        channel.close()
        assert [e.summary async for e in first] == ["hello"]
        assert [e.summary async for e in second] == ["hello"]

    @pytest.mark.asyncio
    async def test_replay_for_late_subscriber(self, channel):
        await channel.emit("job", "early")
        late = channel.subscribe(replay=True)
        fresh = channel.subscribe(replay=False)
        await channel.emit("job", "late")
        channel.close()
        assert [e.summary async for e in late] == ["early", "late"]
        assert [e.summary async for e in fresh] == ["late"]

    @pytest.mark.asyncio
    async def test_subscribe_after_close_replays_then_ends(self, channel):
        await channel.emit("job", "done")
        channel.close()
        subscription = channel.subscribe()
        assert [e.summary async for e in subscription] == ["done"]
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_slow_reader_drops_oldest(self, tmp_path):
        channel = ProgressChannel("job_slow", queue_size=3)
        subscription = channel.subscribe()
        for i in range(5):
            await channel.emit("job", f"e{i}")
        assert subscription.dropped == 2
        first = await subscription.get()
        assert first.summary == "e2"
        assert len(channel.events) == 5

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, channel):
        subscription = channel.subscribe()
        subscription.close()
        assert channel.subscriber_count == 0
        await channel.emit("job", "ignored")
        assert await subscription.get() is None
