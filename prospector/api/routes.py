"""REST and WebSocket routes for Prospector.

Provides endpoints for:
- Submitting contractor batches as jobs
- Monitoring and cancelling jobs
- Streaming progress events
- Exporting results as CSV
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket
from fastapi.responses import Response
from pydantic import BaseModel, Field

from prospector.jobs.export import export_rows, to_csv
from prospector.jobs.results import ResultStore
from prospector.jobs.runner import JobRunner
from prospector.models import ContractorInput, JobPreferences
from prospector.signals.channel import ProgressChannel
from prospector.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

router = APIRouter()

COMPLETE_MESSAGE = '{"type":"complete"}'


def get_runner(request: Request) -> JobRunner:
    return request.app.state.runner


# --- Request/Response Models ---


class JobRequest(BaseModel):
    """Request to start discovery for a batch of contractors."""

    contractors: list[ContractorInput] = Field(default_factory=list)
    preferences: JobPreferences = Field(default_factory=JobPreferences)


class JobResponse(BaseModel):
    """Response after submitting a job."""

    job_id: str
    status: str
    message: str
    total_entities: int


class JobStatus(BaseModel):
    """Current status of a job."""

    job_id: str
    status: str
    total_entities: int = 0
    completed_entities: int = 0
    entities_failed: int = 0
    total_emails: int = 0
    total_cost: float = 0.0
    currency: str = "USD"
    events_count: int = 0


# --- Endpoints ---


@router.post("/jobs", response_model=JobResponse)
async def create_job(request: JobRequest, runner: JobRunner = Depends(get_runner)) -> JobResponse:
    """Submit a batch. The job runs asynchronously; follow it over the WebSocket feed."""
    try:
        job_id = runner.submit(request.contractors, request.preferences)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JobResponse(
        job_id=job_id,
        status="started",
        message=f"Discovery started for {len(request.contractors)} contractors",
        total_entities=len(request.contractors),
    )


@router.get("/jobs")
async def list_jobs(runner: JobRunner = Depends(get_runner)) -> dict[str, Any]:
    return {"jobs": runner.list_jobs()}


@router.get("/jobs/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str, runner: JobRunner = Depends(get_runner)) -> JobStatus:
    job = runner.get(job_id)
    if job is not None:
        return JobStatus(**job.summary())

    metadata = ResultStore.load_metadata(
        runner.config.knowledge.data_dir / "jobs" / job_id / "metadata.json"
    )
    if metadata is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return JobStatus(
        job_id=job_id,
        status=metadata.status,
        total_entities=metadata.total_entities,
        completed_entities=metadata.entities_done + metadata.entities_failed,
        entities_failed=metadata.entities_failed,
        total_emails=metadata.total_emails,
        total_cost=metadata.total_cost,
        currency=metadata.currency,
    )


@router.get("/jobs/{job_id}/results")
async def get_job_results(
    job_id: str, runner: JobRunner = Depends(get_runner)
) -> list[dict[str, Any]]:
    results = runner.results(job_id)
    if results is None:
        raise HTTPException(status_code=404, detail=f"Results for job {job_id} not found")
    return [r.model_dump(mode="json") for r in results]


@router.get("/jobs/{job_id}/export")
async def export_job(job_id: str, runner: JobRunner = Depends(get_runner)) -> Response:
    """Results as CSV, one row per (contractor, email)."""
    results = runner.results(job_id)
    if results is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return Response(
        content=to_csv(export_rows(results)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{job_id}-results.csv"'},
    )


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(job_id: str, runner: JobRunner = Depends(get_runner)) -> dict[str, str]:
    if runner.cancel(job_id):
        return {"job_id": job_id, "status": "cancelling"}
    raise HTTPException(status_code=404, detail=f"Active job {job_id} not found")


# --- WebSocket for real-time progress streaming ---


@router.websocket("/ws/jobs/{job_id}")
async def websocket_progress(websocket: WebSocket, job_id: str) -> None:
    """Stream a job's progress events, replaying those already emitted.

    The socket closes once the job's channel closes. Finished jobs that are
    no longer in memory are replayed from their events ledger.
    """
    runner: JobRunner = websocket.app.state.runner
    job = runner.get(job_id)
    ledger_path = runner.config.knowledge.data_dir / "jobs" / job_id / "events.jsonl"
    if job is None and not ledger_path.exists():
        await websocket.close(code=4404, reason="Job not found")
        return

    await websocket.accept()

    if job is None:
        for event in ProgressChannel.load_ledger(ledger_path):
            await websocket.send_text(event.model_dump_json())
        await websocket.send_text(COMPLETE_MESSAGE)
        await websocket.close()
        return

    subscription = job.channel.subscribe(replay=True)
    try:
        async for event in subscription:
            try:
                await websocket.send_text(event.model_dump_json())
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.API_WEBSOCKET_SEND_FAILED,
                    message=str(exc),
                    suppressed=True,
                    job_id=job_id,
                )
                return
        await websocket.send_text(COMPLETE_MESSAGE)
        await websocket.close()
    finally:
        subscription.close()
