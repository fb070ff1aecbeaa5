"""Job orchestration: batches, phase submission, render callbacks, stalled-job sweeps."""

from bvg.orchestrator.batches import (
    BatchProgress,
    BatchRunResult,
    BatchService,
    BulkResult,
    refresh_batch_status,
)
from bvg.orchestrator.callbacks import (
    CallbackOutcome,
    FollowUp,
    RenderEventHandler,
    describe_render_failure,
    run_follow_up,
)
from bvg.orchestrator.jobs import JobOrchestrator, RunCounts
from bvg.orchestrator.sweep import sweep_stalled_jobs


def get_orchestrator() -> JobOrchestrator:
    """Orchestrator wired to the configured stores, LLM planner and render provider."""
    from bvg.billing.ledger import get_credit_ledger
    from bvg.config import get_settings
    from bvg.jobs.store import get_job_store
    from bvg.render import get_render_provider
    from bvg.scenes import get_prompt_generator

    return JobOrchestrator(
        get_job_store(),
        get_credit_ledger(),
        get_prompt_generator(),
        get_render_provider(),
        settings=get_settings(),
    )


def get_event_handler() -> RenderEventHandler:
    from bvg.billing.ledger import get_credit_ledger
    from bvg.config import get_settings
    from bvg.jobs.store import get_job_store
    from bvg.render import get_render_provider

    return RenderEventHandler(get_job_store(), get_credit_ledger(), get_render_provider(), get_settings())


def get_batch_service() -> BatchService:
    orchestrator = get_orchestrator()
    return BatchService(orchestrator.store, orchestrator)


def get_stitch_pipeline():
    """Stitch pipeline on the configured media host. Raises StitchError when the host is not configured."""
    from bvg.jobs.store import get_job_store
    from bvg.stitch import StitchPipeline, get_media_host

    return StitchPipeline(get_job_store(), get_media_host())


__all__ = [
    "BatchProgress",
    "BatchRunResult",
    "BatchService",
    "BulkResult",
    "CallbackOutcome",
    "FollowUp",
    "JobOrchestrator",
    "RenderEventHandler",
    "RunCounts",
    "describe_render_failure",
    "get_batch_service",
    "get_event_handler",
    "get_orchestrator",
    "get_stitch_pipeline",
    "refresh_batch_status",
    "run_follow_up",
    "sweep_stalled_jobs",
]
