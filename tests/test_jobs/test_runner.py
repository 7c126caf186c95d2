"""Tests for job submission, fan-out, cancellation and persistence."""

import pytest
from conftest import FakeBackend, StallingFetcher, make_runner

from prospector.jobs.results import ResultStore
from prospector.models import ContractorInput, JobPreferences
from prospector.signals.channel import ProgressChannel
from prospector.signals.types import Severity

ACME = ContractorInput(
    registry_number="123456",
    contractor_name="Acme Plumbing",
    city="Phoenix",
    website="https://acmeplumbing.com",
)
DESERT = ContractorInput(registry_number="555111", contractor_name="Desert Roofing", city="Tempe")
NOBODY = ContractorInput(registry_number="", contractor_name="Nobody")

CONTACT_PAGE = '<a href="mailto:office@acmeplumbing.com">Email us</a>'


class TestSubmission:
    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, tmp_path):
        runner = make_runner(tmp_path)
        with pytest.raises(ValueError):
            runner.submit([])

    @pytest.mark.asyncio
    async def test_job_runs_to_completion(self, tmp_path):
        runner = make_runner(tmp_path, pages={"https://acmeplumbing.com/contact": CONTACT_PAGE})
        job_id = runner.submit([ACME, DESERT, NOBODY])
        assert runner.get(job_id).status in {"queued", "running"}

        job = await runner.wait(job_id)

        assert job.status == "completed"
        assert [r.input.row_index for r in runner.results(job_id)] == [0, 1, 2]
        summary = job.summary()
        assert summary["completed_entities"] == 3
        assert summary["entities_failed"] == 1
        assert summary["total_emails"] == 1
        assert job.metadata.entities_done == 2
        assert job.channel.closed
        await runner.aclose()

    @pytest.mark.asyncio
    async def test_results_and_events_persisted(self, tmp_path):
        runner = make_runner(tmp_path, pages={"https://acmeplumbing.com/contact": CONTACT_PAGE})
        job_id = runner.submit([ACME])
        job = await runner.wait(job_id)

        persisted = ResultStore.load_results(job.store.output_path)
        assert [c.email for c in persisted[0].candidates] == ["office@acmeplumbing.com"]
        metadata = ResultStore.load_metadata(job.store.metadata_path)
        assert metadata.status == "completed"
        assert metadata.total_emails == 1

        events = ProgressChannel.load_ledger(job.store.events_path)
        assert events[0].summary == "Job started for 1 contractors"
        assert events[-1].severity == Severity.SUCCESS
        assert [e.sequence for e in events] == list(range(1, len(events) + 1))
        await runner.aclose()

    @pytest.mark.asyncio
    async def test_knowledge_written_back(self, tmp_path):
        runner = make_runner(tmp_path, pages={"https://acmeplumbing.com/contact": CONTACT_PAGE})
        await runner.wait(runner.submit([ACME]))
        emails = await runner.store.get_emails("123456")
        assert [e.email for e in emails] == ["office@acmeplumbing.com"]
        await runner.aclose()


class TestBudgets:
    @pytest.mark.asyncio
    async def test_zero_call_budget_never_searches(self, tmp_path):
        backend = FakeBackend()
        runner = make_runner(tmp_path, backend=backend)
        job_id = runner.submit([DESERT], JobPreferences(max_calls_per_entity=0))
        job = await runner.wait(job_id)
        assert backend.queries == []
        assert job.status == "completed"
        assert job.ledger.max_calls == 0
        await runner.aclose()

    @pytest.mark.asyncio
    async def test_ledger_caps_calls_per_entity(self, tmp_path):
        backend = FakeBackend()
        runner = make_runner(tmp_path, backend=backend)
        job_id = runner.submit([DESERT], JobPreferences(max_calls_per_entity=3))
        job = await runner.wait(job_id)
        assert len(backend.queries) == 3
        assert job.ledger.call_count("555111") == 3
        await runner.aclose()

    @pytest.mark.asyncio
    async def test_search_costs_roll_up(self, tmp_path):
        runner = make_runner(tmp_path)
        job_id = runner.submit([DESERT], JobPreferences(max_calls_per_entity=2, use_llm=False))
        job = await runner.wait(job_id)
        unit = runner.config.costs.search_unit_cost
        assert job.metadata.total_cost == pytest.approx(2 * unit)
        assert job.results[0].cost == pytest.approx(2 * unit)
        await runner.aclose()

    @pytest.mark.asyncio
    async def test_duplicate_rows_report_their_own_cost(self, tmp_path):
        runner = make_runner(tmp_path)
        job_id = runner.submit(
            [DESERT, DESERT], JobPreferences(max_calls_per_entity=2, use_llm=False)
        )
        job = await runner.wait(job_id)
        unit = runner.config.costs.search_unit_cost
        assert job.ledger.call_count("555111") == 2
        assert sum(r.cost for r in job.results) == pytest.approx(2 * unit)
        assert job.metadata.total_cost == pytest.approx(2 * unit)
        await runner.aclose()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_running_job(self, tmp_path):
        fetcher = StallingFetcher()
        runner = make_runner(tmp_path, fetcher=fetcher)
        job_id = runner.submit([ACME])
        await fetcher.started.wait()

        assert runner.cancel(job_id)
        job = await runner.wait(job_id)

        assert job.status == "cancelled"
        assert job.channel.closed
        assert ResultStore.load_metadata(job.store.metadata_path).status == "cancelled"
        assert job.channel.events[-1].severity == Severity.WARNING
        assert not runner.cancel(job_id)
        await runner.aclose()

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, tmp_path):
        assert not make_runner(tmp_path).cancel("job_missing")


class TestRetention:
    @pytest.mark.asyncio
    async def test_finished_jobs_evicted_but_readable_from_disk(self, tmp_path):
        runner = make_runner(tmp_path, retention_limit=1)
        first = runner.submit([DESERT])
        await runner.wait(first)
        second = runner.submit([DESERT])
        await runner.wait(second)

        assert runner.get(first) is None
        assert runner.get(second) is not None
        assert len(runner.results(first)) == 1
        assert runner.results("job_missing") is None
        await runner.aclose()
