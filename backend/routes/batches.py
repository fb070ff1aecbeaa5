"""Batch API routes.

POST /api/batches
  → Stores the batch and returns { batch_id } immediately.
  → A background task creates the jobs and submits their initial renders.

GET /api/batches/{batch_id}
  → Batch record plus per-status job counts.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.deps import current_user
from bvg.errors import BVGError
from bvg.jobs.models import Batch
from bvg.orchestrator import BatchProgress, BatchService, get_batch_service, get_stitch_pipeline
from bvg.schemas.models import BaseConfig, Variable
from bvg.stitch import validate_trim

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class CreateBatchRequest(BaseModel):
    name: str = ""
    base_config: BaseConfig = Field(default_factory=BaseConfig)
    variables: list[Variable] = []
    combinations: Optional[list[dict[str, str]]] = None  # explicit list instead of expanding variables
    sample_size: Optional[int] = None


class BatchStartResponse(BaseModel):
    batch_id: str
    status: str
    total: int
    sample_size: Optional[int] = None


class BatchDetailResponse(BaseModel):
    batch: Batch
    progress: BatchProgress


class StitchBatchRequest(BaseModel):
    trim_seconds: Optional[float] = None


class ActionAccepted(BaseModel):
    batch_id: str
    action: str
    status: str = "accepted"


# ---------------------------------------------------------------------------
# Background runners
# ---------------------------------------------------------------------------

def _run_in_background(label: str, batch_id: str, fn, *args) -> None:
    try:
        result = fn(batch_id, *args)
        logger.info("Batch %s %s finished: %s", batch_id, label, result)
    except BVGError as e:
        logger.warning("Batch %s %s failed: %s", batch_id, label, e)
    except Exception:
        logger.exception("Batch %s %s crashed", batch_id, label)


def _owned(service: BatchService, batch_id: str, user_id: str) -> Batch:
    batch = service.store.get_batch(batch_id)
    if batch is None or batch.user_id != user_id:
        raise HTTPException(status_code=404, detail=f"Batch not found: {batch_id}")
    return batch


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/batches", response_model=BatchStartResponse, status_code=status.HTTP_201_CREATED)
def create_batch(
    request: CreateBatchRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    service: BatchService = Depends(get_batch_service),
):
    """Create a batch from variables (or explicit combinations) and start it in the background."""
    batch = service.create_batch(
        user_id,
        request.base_config,
        variables=request.variables,
        combinations=request.combinations,
        sample_size=request.sample_size,
        name=request.name,
    )
    background_tasks.add_task(_run_in_background, "run", batch.batch_id, service.run_batch)
    logger.info("Batch %s created for %s with %d combinations", batch.batch_id, user_id, batch.total)
    return BatchStartResponse(
        batch_id=batch.batch_id,
        status=batch.status.value,
        total=batch.total,
        sample_size=batch.sample_size,
    )


@router.get("/batches/{batch_id}", response_model=BatchDetailResponse)
def get_batch(
    batch_id: str,
    user_id: str = Depends(current_user),
    service: BatchService = Depends(get_batch_service),
):
    batch = _owned(service, batch_id, user_id)
    return BatchDetailResponse(batch=batch, progress=service.progress(batch_id))


@router.post("/batches/{batch_id}/resume", response_model=ActionAccepted, status_code=status.HTTP_202_ACCEPTED)
def resume_batch(
    batch_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    service: BatchService = Depends(get_batch_service),
):
    """Run the remaining combinations of a batch paused after its sample."""
    batch = _owned(service, batch_id, user_id)
    if not batch.is_paused:
        raise HTTPException(status_code=400, detail=f"Batch {batch_id} is not paused")
    background_tasks.add_task(_run_in_background, "resume", batch_id, service.resume_batch)
    return ActionAccepted(batch_id=batch_id, action="resume")


@router.post("/batches/{batch_id}/retry-failed", response_model=ActionAccepted, status_code=status.HTTP_202_ACCEPTED)
def retry_failed(
    batch_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    service: BatchService = Depends(get_batch_service),
):
    _owned(service, batch_id, user_id)
    background_tasks.add_task(_run_in_background, "retry", batch_id, service.retry_failed_jobs)
    return ActionAccepted(batch_id=batch_id, action="retry-failed")


@router.post("/batches/{batch_id}/stitch", response_model=ActionAccepted, status_code=status.HTTP_202_ACCEPTED)
def stitch_batch(
    batch_id: str,
    request: StitchBatchRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(current_user),
    service: BatchService = Depends(get_batch_service),
):
    """Stitch every job in the batch whose scenes are all rendered."""
    _owned(service, batch_id, user_id)
    trim = validate_trim(request.trim_seconds)
    stitcher = get_stitch_pipeline()
    background_tasks.add_task(_run_in_background, "stitch", batch_id, service.stitch_ready_jobs, stitcher, trim)
    return ActionAccepted(batch_id=batch_id, action="stitch")
