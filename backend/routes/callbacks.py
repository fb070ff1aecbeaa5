"""Render provider callback endpoint.

The provider posts here when a task finishes. No user identity is attached;
the job is located by its task id.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException

from bvg.orchestrator import (
    CallbackOutcome,
    JobOrchestrator,
    RenderEventHandler,
    get_event_handler,
    get_orchestrator,
    get_stitch_pipeline,
    run_follow_up,
)
from bvg.render import parse_callback

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/callbacks/render", response_model=CallbackOutcome)
def render_callback(
    background_tasks: BackgroundTasks,
    payload: dict[str, Any] = Body(...),
    handler: RenderEventHandler = Depends(get_event_handler),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    try:
        update = parse_callback(payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed callback: {e}")

    logger.info("Render callback for task %s: %s", update.task_id, update.state.value)
    outcome = handler.handle(update)
    if outcome.applied:
        background_tasks.add_task(
            run_follow_up, outcome, orchestrator, get_stitch_pipeline, orchestrator.settings.stitch_trim_seconds
        )
    return outcome
