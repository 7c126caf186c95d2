"""Job runner: accepts batches, fans entities out, persists results.

One asyncio task per job. Entities inside every job share a bounded worker
pool. Each job owns its budget ledger, cost recorder and progress channel;
the knowledge store, fetchers and registry lookup are shared by all jobs.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlparse

from prospector.browser.http import HttpFetcher
from prospector.browser.layer import BrowserLayer
from prospector.browser.robots import RobotsPolicy
from prospector.browser.types import PageFetcher
from prospector.config.settings import ProspectorConfig
from prospector.discovery.executor import DiscoveryExecutor
from prospector.jobs.results import JobMetadata, ResultStore
from prospector.knowledge.store import KnowledgeStore
from prospector.ledger.budget import BudgetLedger
from prospector.ledger.costs import CostRecorder
from prospector.models import ContractorInput, JobPreferences
from prospector.orchestrator.engine import DiscoveryOrchestrator, EntityRunResult
from prospector.reasoning.gemini import GeminiReasoner
from prospector.reasoning.rules import RuleBasedReasoner
from prospector.reasoning.selecting import ModelReasoner, SelectingReasoner
from prospector.registry.dataset import RegistryDataset
from prospector.registry.lookup import RegistryLookup
from prospector.registry.portal import PlaywrightRegistryPortal
from prospector.search.adapter import SearchProviderAdapter
from prospector.search.backends import BrowserSearchBackend, CustomSearchBackend, SearchBackend
from prospector.search.types import SearchSource
from prospector.signals.channel import ProgressChannel
from prospector.signals.types import Severity
from prospector.telemetry.errors import ErrorCode, emit_structured_error
from prospector.validation.validator import (
    DnsDomainInspector,
    DomainInspector,
    EmailValidator,
    MailboxProber,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = {"queued", "running"}


@dataclass
class Job:
    """In-memory state of one submitted batch."""

    job_id: str
    inputs: list[ContractorInput]
    preferences: JobPreferences
    ledger: BudgetLedger
    recorder: CostRecorder
    channel: ProgressChannel
    store: ResultStore
    metadata: JobMetadata
    results: list[EntityRunResult] = field(default_factory=list)
    task: asyncio.Task[Any] | None = None

    @property
    def status(self) -> str:
        return self.metadata.status

    @property
    def active(self) -> bool:
        return self.metadata.status in ACTIVE_STATUSES

    def summary(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.metadata.status,
            "total_entities": len(self.inputs),
            "completed_entities": len(self.results),
            "entities_failed": sum(1 for r in self.results if r.status == "failed"),
            "total_emails": sum(len(r.candidates) for r in self.results),
            "total_cost": round(self.recorder.total_cost, 6),
            "currency": self.metadata.currency,
            "events_count": len(self.channel.events),
        }


class JobRunner:
    """Owns running jobs and the collaborators they share."""

    def __init__(
        self,
        config: ProspectorConfig | None = None,
        store: KnowledgeStore | None = None,
        fetcher: PageFetcher | None = None,
        search_backend: SearchBackend | None = None,
        registry: RegistryLookup | None = None,
        model: ModelReasoner | None = None,
        inspector: DomainInspector | None = None,
        prober: MailboxProber | None = None,
        robots: RobotsPolicy | None = None,
        retention_limit: int = 200,
    ) -> None:
        self._config = config or ProspectorConfig()
        cfg = self._config

        self._store = store or KnowledgeStore(
            cfg.knowledge.store_path,
            staleness=timedelta(days=cfg.knowledge.staleness_days),
            min_email_confidence=cfg.knowledge.min_email_confidence,
        )

        self._http: HttpFetcher | None = None
        self._browser: BrowserLayer | None = None
        if fetcher is None or robots is None:
            self._http = HttpFetcher(cfg.browser, cfg.timeouts)
        self._fetcher: PageFetcher = fetcher or self._http  # type: ignore[assignment]
        if robots is None:
            robots = RobotsPolicy(
                self._http,  # type: ignore[arg-type]
                user_agent=cfg.browser.user_agent or "*",
                enabled=cfg.browser.respect_robots_txt,
            )
        self._robots = robots

        self._search_unit_cost = cfg.costs.search_unit_cost
        if search_backend is None:
            api_backend = CustomSearchBackend(cfg.search, cfg.timeouts)
            if cfg.search.backend == "api" and api_backend.is_available:
                search_backend = api_backend
            else:
                search_backend = BrowserSearchBackend(
                    self._browser_layer(), SearchSource.GOOGLE, registry_url=cfg.registry.portal_url
                )
                self._search_unit_cost = cfg.costs.browser_search_unit_cost
        self._search_backend = search_backend

        if registry is None:
            portal = None
            if cfg.registry.portal_enabled:
                portal = PlaywrightRegistryPortal(self._browser_layer(), cfg.registry)
            registry = RegistryLookup(
                self._store,
                dataset=RegistryDataset(cfg.registry.dataset_path, cfg.registry.fuzzy_match_threshold),
                portal=portal,
                registry_label=cfg.registry.label,
            )
        self._registry = registry

        self._rules = RuleBasedReasoner(region=cfg.registry.region, registry_label=cfg.registry.label)
        self._model = model
        self._model_checked = model is not None
        self._model_lock = asyncio.Lock()

        self._inspector = inspector
        self._prober = prober
        self._registry_host = urlparse(cfg.registry.portal_url).netloc.lower()
        self._semaphore = asyncio.Semaphore(cfg.workers.max_concurrent_entities)
        self._retention_limit = retention_limit
        self._jobs: dict[str, Job] = {}

    @property
    def config(self) -> ProspectorConfig:
        return self._config

    @property
    def store(self) -> KnowledgeStore:
        return self._store

    def _browser_layer(self) -> BrowserLayer:
        if self._browser is None:
            self._browser = BrowserLayer(self._config.browser, self._config.timeouts)
        return self._browser

    def _domain_inspector(self) -> DomainInspector:
        if self._inspector is None:
            self._inspector = DnsDomainInspector(self._config.timeouts)
        return self._inspector

    async def _ensure_model(self) -> None:
        async with self._model_lock:
            if self._model_checked:
                return
            self._model_checked = True
            reasoner = GeminiReasoner(self._config.vertex, self._config.timeouts)
            if await reasoner.initialize():
                self._model = reasoner

    # --- Submission ---

    def submit(
        self, inputs: list[ContractorInput], preferences: JobPreferences | None = None
    ) -> str:
        """Start a job and return its id immediately. Must be called from a running loop."""
        if not inputs:
            raise ValueError("At least one contractor is required")
        preferences = preferences or JobPreferences()
        cfg = self._config

        job_id = f"job_{uuid.uuid4().hex[:12]}"
        rows = [contractor.model_copy(update={"row_index": i}) for i, contractor in enumerate(inputs)]
        max_calls = (
            preferences.max_calls_per_entity
            if preferences.max_calls_per_entity is not None
            else cfg.search.max_calls_per_entity
        )
        results_store = ResultStore(job_id, cfg.knowledge.data_dir)
        job = Job(
            job_id=job_id,
            inputs=rows,
            preferences=preferences,
            ledger=BudgetLedger(max_calls=max_calls, history_limit=cfg.search.history_limit),
            recorder=CostRecorder(cfg.costs, budget_cap=preferences.budget_cap),
            channel=ProgressChannel(
                job_id,
                ledger_path=results_store.events_path,
                queue_size=cfg.workers.progress_queue_size,
            ),
            store=results_store,
            metadata=JobMetadata(
                job_id=job_id,
                started_at=datetime.now(timezone.utc),
                total_entities=len(rows),
                currency=cfg.costs.currency,
                status="queued",
            ),
        )
        results_store.write_metadata(job.metadata)
        self._jobs[job_id] = job
        job.task = asyncio.create_task(self._run_job(job))
        self._evict_finished()
        logger.info(
            "job_submitted",
            extra={"job_id": job_id, "entities": len(rows), "max_calls_per_entity": max_calls},
        )
        return job_id

    # --- Execution ---

    async def _run_job(self, job: Job) -> None:
        job.metadata.status = "running"
        await job.channel.emit(
            "job",
            f"Job started for {len(job.inputs)} contractors",
            detail={"use_llm": job.preferences.use_llm, "strictness": job.preferences.strictness},
        )
        try:
            if job.preferences.use_llm:
                await self._ensure_model()
            await asyncio.gather(*(self._run_entity(job, contractor) for contractor in job.inputs))
        except asyncio.CancelledError:
            job.metadata.status = "cancelled"
            self._finalize(job)
            await job.channel.emit(
                "job",
                f"Job cancelled after {len(job.results)} of {len(job.inputs)} contractors",
                severity=Severity.WARNING,
            )
            job.channel.close()
            raise
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.JOB_RUN_FAILED,
                message=str(exc),
                suppressed=False,
                job_id=job.job_id,
                details={"exception_type": type(exc).__name__},
            )
            job.metadata.status = "failed"
            self._finalize(job)
            await job.channel.emit("job", f"Job failed: {exc}", severity=Severity.ERROR)
            job.channel.close()
            return

        job.metadata.status = "completed"
        self._finalize(job)
        await job.channel.emit(
            "job",
            f"Job completed: {job.metadata.total_emails} emails for "
            f"{job.metadata.entities_done} of {len(job.inputs)} contractors",
            severity=Severity.SUCCESS,
            detail={"total_cost": job.metadata.total_cost},
        )
        job.channel.close()

    async def _run_entity(self, job: Job, contractor: ContractorInput) -> EntityRunResult:
        async with self._semaphore:
            orchestrator = self._build_orchestrator(job, contractor)
            result = await orchestrator.run()
        job.results.append(result)
        await job.channel.emit(
            "job",
            f"Finished {len(job.results)}/{len(job.inputs)}: {contractor.contractor_name}",
            severity=Severity.SUCCESS if result.status == "done" else Severity.WARNING,
            detail={
                "row_index": contractor.row_index,
                "status": result.status,
                "emails": len(result.candidates),
            },
        )
        return result

    def _build_orchestrator(self, job: Job, contractor: ContractorInput) -> DiscoveryOrchestrator:
        cfg = self._config
        key = contractor.registry_number.strip() or f"row-{contractor.row_index}"
        trail = job.recorder.scoped(key)
        adapter = SearchProviderAdapter(
            self._search_backend, job.ledger, recorder=trail, unit_cost=self._search_unit_cost
        )
        executor = DiscoveryExecutor(
            self._fetcher,
            adapter,
            trail,
            key,
            preferences=job.preferences,
            robots=self._robots,
            scrape_unit_cost=cfg.costs.scrape_unit_cost,
            max_results_per_query=cfg.search.max_results_per_query,
            registry_host=self._registry_host,
        )
        reasoner = SelectingReasoner(
            self._rules,
            self._model,
            use_llm=job.preferences.use_llm,
            recorder=trail,
            unit_cost=cfg.costs.reasoning_unit_cost,
            entity_key=key,
        )
        validator = EmailValidator(
            cfg.validation,
            cfg.timeouts,
            strictness=job.preferences.strictness,
            inspector=self._domain_inspector(),
            prober=self._prober,
            recorder=trail,
            unit_cost=cfg.costs.validation_unit_cost,
        )
        return DiscoveryOrchestrator(
            contractor,
            self._registry,
            reasoner,
            executor,
            validator,
            self._store,
            trail,
            channel=job.channel,
            fallback_city=contractor.city or cfg.registry.region,
            min_email_confidence=cfg.knowledge.min_email_confidence,
        )

    def _finalize(self, job: Job) -> None:
        meta = job.metadata
        meta.entities_done = sum(1 for r in job.results if r.status == "done")
        meta.entities_failed = sum(1 for r in job.results if r.status == "failed")
        meta.total_emails = sum(len(r.candidates) for r in job.results)
        meta.total_cost = round(job.recorder.total_cost, 6)
        meta.completed_at = datetime.now(timezone.utc)
        ordered = sorted(job.results, key=lambda r: r.input.row_index)
        job.store.persist(ordered, meta)

    # --- Queries ---

    def get(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[dict[str, Any]]:
        return [job.summary() for job in self._jobs.values()]

    def results(self, job_id: str) -> list[EntityRunResult] | None:
        """Results of a known job, from memory or from its persisted file."""
        job = self._jobs.get(job_id)
        if job is not None:
            return sorted(job.results, key=lambda r: r.input.row_index)
        output_path = self._config.knowledge.data_dir / "jobs" / job_id / "results.jsonl"
        if not output_path.exists():
            return None
        return ResultStore.load_results(output_path)

    def cancel(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.task is None or job.task.done():
            return False
        job.task.cancel()
        logger.info("job_cancel_requested", extra={"job_id": job_id})
        return True

    async def wait(self, job_id: str) -> Job:
        """Await a job's task. Cancellation of the job is not re-raised."""
        job = self._jobs[job_id]
        if job.task is not None:
            await asyncio.gather(job.task, return_exceptions=True)
        return job

    def _evict_finished(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if not job.active]
        overflow = len(self._jobs) - self._retention_limit
        for job_id in finished[: max(0, overflow)]:
            del self._jobs[job_id]

    async def aclose(self) -> None:
        tasks = [job.task for job in self._jobs.values() if job.task and not job.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._http is not None:
            await self._http.aclose()
        if self._browser is not None:
            await self._browser.stop()
