"""Apply render outcomes (webhook deliveries or status polls) to jobs, and pick the follow-up step."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from pydantic import BaseModel

from bvg.billing.ledger import CreditLedger
from bvg.config import Settings, get_settings
from bvg.errors import BVGError, JobNotFoundError
from bvg.jobs.models import GenerationJob, Phase, PhaseError, PhaseStatus
from bvg.jobs.store import JobStore, apply_update
from bvg.orchestrator.batches import refresh_batch_status
from bvg.orchestrator.jobs import JobOrchestrator
from bvg.orchestrator.settlement import charge_job, refund_job
from bvg.render.base import RenderProvider, RenderState, RenderUpdate
from bvg.schemas.models import VideoSegment
from bvg.stitch.pipeline import StitchPipeline

logger = logging.getLogger(__name__)

AUDIO_FILTERED_MESSAGE = (
    "The provider filtered the audio track. Simplify the avatar script or remove brand and business names."
)
IP_IMAGE_MESSAGE = (
    "The reference image was rejected by the provider's IP policy. "
    "Use a photo you own, or switch to text-to-video."
)


class FollowUp(str, Enum):
    NONE = "none"
    EXTEND = "extend"
    STITCH = "stitch"


class CallbackOutcome(BaseModel):
    job_id: str
    phase: Phase | None = None
    status: PhaseStatus | None = None
    applied: bool = False  # False for duplicates, superseded tasks and still-running updates
    follow_up: FollowUp = FollowUp.NONE


def describe_render_failure(message: str | None) -> tuple[str, str, str]:
    """Map a provider failure message to (error type, user-facing message, suggested action)."""
    text = message or "Unknown error"
    lowered = text.lower()
    if "audio_filtered" in lowered or ("audio" in lowered and "filter" in lowered):
        return "AUDIO_FILTERED", AUDIO_FILTERED_MESSAGE, "Edit the script and retry."
    if "ip_input_image" in lowered:
        return "INVALID_PARAMS", IP_IMAGE_MESSAGE, "Change the image and retry."
    return "API_ERROR", text, "Retry the generation."


class RenderEventHandler:
    def __init__(
        self,
        store: JobStore,
        ledger: CreditLedger,
        render_provider: RenderProvider | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.render_provider = render_provider
        self.settings = settings or get_settings()

    def handle(self, update: RenderUpdate) -> CallbackOutcome:
        """Apply one render outcome. Repeated deliveries for the same task are no-ops."""
        job = self.store.get_by_task_id(update.task_id)
        if job is None:
            raise JobNotFoundError(f"No job owns task {update.task_id}")

        result: dict = {}

        def mutate(j: GenerationJob) -> bool:
            result.clear()
            phase = j.phase_for_task(update.task_id)
            if phase is None:
                return False
            result["phase"] = phase
            initial = phase == Phase.INITIAL
            current = j.initial_status if initial else j.extended_status
            if current != PhaseStatus.GENERATING:
                return False

            if update.state == RenderState.SUCCEEDED:
                if not update.video_url:
                    logger.warning("Task %s reported success without a video URL", update.task_id)
                    return False
                seconds = (
                    self.settings.initial_segment_seconds if initial else self.settings.extension_segment_seconds
                )
                scene = 1 if initial else j.current_scene + 1
                j.video_segments.append(
                    VideoSegment(
                        url=update.video_url,
                        duration_ms=seconds * 1000,
                        type="initial" if initial else "extended",
                        scene=scene,
                        task_id=update.task_id,
                    )
                )
                if initial:
                    j.initial_status = PhaseStatus.COMPLETED
                    j.initial_error = None
                else:
                    j.extended_status = PhaseStatus.COMPLETED
                    j.extended_error = None
                    j.current_scene += 1
                result["status"] = PhaseStatus.COMPLETED
                return True

            if update.state == RenderState.FAILED:
                error_type, friendly, action = describe_render_failure(update.error_message)
                prefix = "" if initial else f"Scene {j.current_scene + 1}: "
                error = PhaseError(
                    type=error_type,
                    message=f"{prefix}Generation failed at provider: {friendly}",
                    user_action=action,
                    detail=update.error_message,
                )
                if initial:
                    j.initial_status = PhaseStatus.FAILED
                    j.initial_error = error
                else:
                    j.extended_status = PhaseStatus.FAILED
                    j.extended_error = error
                result["status"] = PhaseStatus.FAILED
                return True
            return False

        job = apply_update(self.store, job.job_id, mutate)
        outcome = CallbackOutcome(
            job_id=job.job_id,
            phase=result.get("phase"),
            status=result.get("status"),
            applied="status" in result,
        )
        if not outcome.applied:
            logger.info("Ignoring %s update for task %s on %s", update.state.value, update.task_id, job.job_id)
            return outcome

        if outcome.status == PhaseStatus.FAILED:
            logger.warning("Render %s failed for %s: %s", update.task_id, job.job_id, update.error_message)
            refund_job(self.ledger, job.job_id, reason=update.error_message or "render failed")
        else:
            logger.info("Segment %d/%d ready for %s", len(job.video_segments), job.number_of_scenes, job.job_id)
            if job.has_all_scenes:
                charge_job(self.ledger, job)
            outcome.follow_up = self._follow_up(job)

        if job.batch_id:
            refresh_batch_status(self.store, job.batch_id)
        return outcome

    def _follow_up(self, job: GenerationJob) -> FollowUp:
        if not job.has_all_scenes:
            return FollowUp.EXTEND if self.settings.auto_extend else FollowUp.NONE
        if len(job.video_segments) >= 2 and not job.is_final and self.settings.auto_stitch:
            return FollowUp.STITCH
        return FollowUp.NONE

    def poll(self, job_id: str) -> list[CallbackOutcome]:
        """Ask the provider about every rendering phase of a job and apply finished results."""
        if self.render_provider is None:
            raise RuntimeError("Polling needs a render provider")
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        outcomes: list[CallbackOutcome] = []
        for status, task_id in (
            (job.initial_status, job.initial_task_id),
            (job.extended_status, job.extended_task_id),
        ):
            if status != PhaseStatus.GENERATING or not task_id:
                continue
            update = self.render_provider.get_task_status(task_id)
            if update.state == RenderState.RUNNING:
                continue
            outcomes.append(self.handle(update))
        return outcomes


def run_follow_up(
    outcome: CallbackOutcome,
    orchestrator: JobOrchestrator,
    stitcher: Callable[[], StitchPipeline] | None = None,
    trim_seconds: float | None = None,
) -> None:
    """Carry out the step a callback asked for. Runs in the background, so failures are only logged."""
    try:
        if outcome.follow_up == FollowUp.EXTEND:
            orchestrator.run_extension_phase(outcome.job_id)
        elif outcome.follow_up == FollowUp.STITCH and stitcher is not None:
            stitcher().stitch(outcome.job_id, trim_seconds)
    except BVGError as e:
        logger.warning("Follow-up %s for %s failed: %s", outcome.follow_up.value, outcome.job_id, e)
