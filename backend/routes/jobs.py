"""Per-job API routes: status, retry with edits, manual extension, stitching and polling."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from backend.deps import current_user
from bvg.jobs.models import GenerationJob, OverallStatus, overall_status
from bvg.orchestrator import (
    CallbackOutcome,
    JobOrchestrator,
    RenderEventHandler,
    get_event_handler,
    get_orchestrator,
    get_stitch_pipeline,
    run_follow_up,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class JobResponse(BaseModel):
    job: GenerationJob
    overall_status: OverallStatus


class RetryRequest(BaseModel):
    edited_prompt: Optional[str] = None
    edited_script: Optional[str] = None


class StitchRequest(BaseModel):
    trim_seconds: Optional[float] = None


class PollResponse(BaseModel):
    job: JobResponse
    outcomes: list[CallbackOutcome]


def _respond(job: GenerationJob) -> JobResponse:
    return JobResponse(job=job, overall_status=overall_status(job))


def _owned(orchestrator: JobOrchestrator, job_id: str, user_id: str) -> GenerationJob:
    job = orchestrator.store.get(job_id)
    if job is None or job.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return job


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    user_id: str = Depends(current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    return _respond(_owned(orchestrator, job_id, user_id))


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
def retry_job(
    job_id: str,
    request: RetryRequest,
    user_id: str = Depends(current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Retry the failed phase, optionally with an edited prompt and/or script."""
    _owned(orchestrator, job_id, user_id)
    job = orchestrator.retry_failed_phase(job_id, request.edited_prompt, request.edited_script)
    return _respond(job)


@router.post("/jobs/{job_id}/extend", response_model=JobResponse)
def extend_job(
    job_id: str,
    request: RetryRequest,
    user_id: str = Depends(current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Submit the next scene manually (when auto-extend is off or a prompt edit is wanted)."""
    _owned(orchestrator, job_id, user_id)
    job = orchestrator.run_extension_phase(job_id, request.edited_prompt, request.edited_script)
    return _respond(job)


@router.post("/jobs/{job_id}/stitch", response_model=JobResponse)
def stitch_job(
    job_id: str,
    request: StitchRequest,
    user_id: str = Depends(current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Stitch all segments into the final video. Blocks until the composed URL is known."""
    _owned(orchestrator, job_id, user_id)
    job = get_stitch_pipeline().stitch(job_id, request.trim_seconds)
    return _respond(job)


@router.post("/jobs/{job_id}/poll", response_model=PollResponse)
def poll_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    handler: RenderEventHandler = Depends(get_event_handler),
):
    """Ask the render provider for results the callback may have missed."""
    _owned(orchestrator, job_id, user_id)
    outcomes = handler.poll(job_id)
    for outcome in outcomes:
        background_tasks.add_task(
            run_follow_up, outcome, orchestrator, get_stitch_pipeline, orchestrator.settings.stitch_trim_seconds
        )
    job = orchestrator.store.get(job_id)
    return PollResponse(job=_respond(job), outcomes=outcomes)
