"""Job lifecycle: create jobs from combinations, submit the initial render, chain extensions, retry failures.

Every run method persists its outcome on the job and returns the stored job.
A provider or prompt failure lands on the phase's error field; it is not raised.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable, Iterable

from pydantic import BaseModel

from bvg.billing.ledger import CreditLedger
from bvg.config import Settings, get_settings
from bvg.errors import (
    BVGError,
    InfrastructureError,
    InsufficientCreditsError,
    JobNotFoundError,
    ProviderError,
    ValidationError,
)
from bvg.jobs.models import GenerationJob, Phase, PhaseError, PhaseStatus
from bvg.jobs.store import JobStore, _new_job_id, apply_update
from bvg.orchestrator.settlement import ensure_reservation, refund_job
from bvg.render.base import RenderProvider, RenderRequest
from bvg.render.prompts import (
    build_extension_prompt,
    build_initial_prompt,
    normalize_aspect_ratio,
    seed_for,
)
from bvg.scenes.planner import PromptGenerator
from bvg.schemas.models import BaseConfig, ScenePrompt
from bvg.variables.expander import Combination, build_job_config

logger = logging.getLogger(__name__)


class RunCounts(BaseModel):
    started: int = 0
    failed: int = 0


def _set_scene(job: GenerationJob, index: int, prompt: str | None, script: str | None) -> None:
    """Overwrite the visual prompt and/or script of scene ``index`` (0-based), appending it if missing."""
    if prompt is None and script is None:
        return
    while len(job.scene_prompts) <= index:
        job.scene_prompts.append(ScenePrompt(scene_number=len(job.scene_prompts) + 1, visual_prompt=""))
    scene = job.scene_prompts[index]
    job.scene_prompts[index] = scene.model_copy(
        update={
            "visual_prompt": prompt if prompt is not None else scene.visual_prompt,
            "script": script if script is not None else scene.script,
        }
    )


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        ledger: CreditLedger,
        prompt_generator: PromptGenerator,
        render_provider: RenderProvider,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.ledger = ledger
        self.prompt_generator = prompt_generator
        self.render_provider = render_provider
        self.settings = settings or get_settings()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_jobs(
        self,
        batch_id: str | None,
        user_id: str,
        combinations: list[Combination],
        base_config: BaseConfig,
        indices: Iterable[int] | None = None,
        is_sample: bool = False,
    ) -> list[str]:
        """Insert one pending job per combination index. Rows that fail to insert are logged and skipped."""
        job_ids: list[str] = []
        targets = list(indices) if indices is not None else list(range(len(combinations)))
        for n, index in enumerate(targets):
            if n > 0 and self.settings.creation_delay_seconds:
                self._sleep(self.settings.creation_delay_seconds)
            job_id = _new_job_id()
            job = GenerationJob(
                job_id=job_id,
                batch_id=batch_id,
                user_id=user_id,
                variation_index=index,
                config=build_job_config(combinations[index], base_config),
                seed=seed_for(job_id),
                is_sample=is_sample,
            )
            try:
                self.store.create(job)
            except (InfrastructureError, ValidationError) as e:
                logger.warning("Skipping combination %d of batch %s: %s", index, batch_id, e)
                continue
            job_ids.append(job_id)
        logger.info("Created %d/%d jobs for batch %s", len(job_ids), len(targets), batch_id)
        return job_ids

    def create_job(self, user_id: str, base_config: BaseConfig, combination: Combination | None = None) -> GenerationJob:
        """Standalone job outside any batch."""
        job_id = _new_job_id()
        job = GenerationJob(
            job_id=job_id,
            user_id=user_id,
            config=build_job_config(combination or {}, base_config),
            seed=seed_for(job_id),
        )
        return self.store.create(job)

    def process_jobs(self, job_ids: list[str]) -> RunCounts:
        """Run the initial phase for each job, pacing submissions. One job's failure never stops the rest."""
        counts = RunCounts()
        for n, job_id in enumerate(job_ids):
            if n > 0 and self.settings.submission_delay_seconds:
                self._sleep(self.settings.submission_delay_seconds)
            try:
                job = self.run_initial_phase(job_id)
            except BVGError as e:
                logger.warning("Initial phase for %s did not start: %s", job_id, e)
                counts.failed += 1
                continue
            except Exception:
                logger.exception("Unexpected error starting %s", job_id)
                counts.failed += 1
                continue
            if job.initial_status == PhaseStatus.GENERATING:
                counts.started += 1
            else:
                counts.failed += 1
        return counts

    # ------------------------------------------------------------------
    # Initial phase
    # ------------------------------------------------------------------

    def run_initial_phase(
        self, job_id: str, edited_prompt: str | None = None, edited_script: str | None = None
    ) -> GenerationJob:
        """Reserve credits, make sure scene prompts exist, then submit scene 1 to the render provider."""
        job = self._require(job_id)
        if job.initial_status != PhaseStatus.PENDING:
            raise ValidationError(f"Initial phase of {job_id} is {job.initial_status.value}, expected pending")

        try:
            ensure_reservation(self.ledger, job, self.render_provider.name, self.settings)
        except InsufficientCreditsError as e:
            logger.info("Job %s blocked: %s", job_id, e)
            return self._fail(
                job_id,
                Phase.INITIAL,
                PhaseError(
                    type="INSUFFICIENT_CREDITS",
                    message=str(e),
                    user_action="Purchase more credits, then retry this video.",
                ),
                refund=False,
            )

        if not job.scene_prompts:
            try:
                scenes = self.prompt_generator.generate_prompts(job.config)
            except Exception as e:
                logger.warning("Prompt generation failed for %s: %s", job_id, e)
                return self._fail(
                    job_id,
                    Phase.INITIAL,
                    PhaseError(
                        type="PROMPT_GENERATION",
                        message=f"AI prompt generation failed: {e}",
                        user_action="Retry; if it keeps failing, edit the story idea.",
                    ),
                )
            if not scenes:
                logger.warning("Prompt generation returned no scenes for %s", job_id)
                return self._fail(
                    job_id,
                    Phase.INITIAL,
                    PhaseError(
                        type="PROMPT_GENERATION",
                        message="AI prompt generation failed: no scene prompts returned",
                        user_action="Retry; if it keeps failing, edit the story idea.",
                    ),
                )
            if len(scenes) != job.number_of_scenes:
                logger.warning(
                    "Expected %d scene prompts for %s, got %d; missing scenes continue from the opening",
                    job.number_of_scenes,
                    job_id,
                    len(scenes),
                )

            def store_scenes(j: GenerationJob) -> None:
                j.scene_prompts = scenes

            job = apply_update(self.store, job_id, store_scenes)

        if edited_prompt is not None or edited_script is not None:
            job = apply_update(self.store, job_id, lambda j: _set_scene(j, 0, edited_prompt, edited_script))

        config = job.config
        request = RenderRequest(
            prompt=build_initial_prompt(config, job.scene_prompts[0]),
            image_url=config.reference_image,
            aspect_ratio=normalize_aspect_ratio(config.aspect_ratio),
            model=config.model or self.settings.default_model,
            seed=job.seed if job.seed is not None else seed_for(job_id),
            generation_mode=config.generation_mode,
        )
        try:
            task_id = self.render_provider.submit_render(request)
        except ProviderError as e:
            logger.warning("Initial render submit failed for %s: %s", job_id, e.type.value)
            return self._fail(job_id, Phase.INITIAL, PhaseError.from_provider_error(e))
        except Exception as e:
            logger.exception("Unexpected error submitting initial render for %s", job_id)
            return self._fail(
                job_id,
                Phase.INITIAL,
                PhaseError(
                    type="API_ERROR",
                    message=f"Render submission failed: {e}",
                    user_action="Retry the generation.",
                ),
            )

        def started(j: GenerationJob) -> None:
            j.initial_task_id = task_id
            j.initial_status = PhaseStatus.GENERATING
            j.initial_error = None
            j.initial_submitted_at = datetime.utcnow()

        job = apply_update(self.store, job_id, started)
        logger.info("Submitted initial render for %s (task %s)", job_id, task_id)
        return job

    # ------------------------------------------------------------------
    # Extension phase
    # ------------------------------------------------------------------

    def run_extension_phase(
        self, job_id: str, edited_prompt: str | None = None, edited_script: str | None = None
    ) -> GenerationJob:
        """Submit the next scene as a continuation of the last rendered segment."""
        job = self._require(job_id)
        if job.initial_status != PhaseStatus.COMPLETED:
            raise ValidationError("Initial video must complete before it can be extended")
        if job.extended_status == PhaseStatus.GENERATING:
            raise ValidationError("An extension is already rendering for this job")
        if job.extended_status == PhaseStatus.FAILED:
            raise ValidationError("The last extension failed; retry it instead")
        if job.current_scene >= job.number_of_scenes:
            raise ValidationError(f"All {job.number_of_scenes} scenes are already rendered")
        if len(job.video_segments) < job.current_scene:
            raise ValidationError("Previous segment has not finished rendering")

        index = job.current_scene
        next_scene = index + 1
        if edited_prompt is not None or edited_script is not None or len(job.scene_prompts) <= index:
            fallback = None
            if len(job.scene_prompts) <= index and edited_prompt is None:
                opening = job.scene_prompts[0].visual_prompt[:200] if job.scene_prompts else job.config.story_idea
                fallback = f"Continue the action from the previous scene naturally. Context: {opening}"
            job = apply_update(
                self.store,
                job_id,
                lambda j: _set_scene(j, index, edited_prompt if edited_prompt is not None else fallback, edited_script),
            )

        try:
            ensure_reservation(self.ledger, job, self.render_provider.name, self.settings)
        except InsufficientCreditsError as e:
            return self._fail(
                job_id,
                Phase.EXTENSION,
                PhaseError(
                    type="INSUFFICIENT_CREDITS",
                    message=f"Scene {next_scene}: {e}",
                    user_action="Purchase more credits, then retry this scene.",
                ),
                refund=False,
            )

        previous_task_id = job.last_task_id
        prompt = build_extension_prompt(
            job.config, job.scene_prompts[index], self.settings.extension_segment_seconds
        )
        try:
            task_id = self.render_provider.extend_render(
                previous_task_id, prompt, self.settings.extension_segment_seconds, seed=job.seed
            )
        except ProviderError as e:
            logger.warning("Extension submit failed for %s scene %d: %s", job_id, next_scene, e.type.value)
            return self._fail(
                job_id,
                Phase.EXTENSION,
                PhaseError.from_provider_error(e, prefix=f"Scene {next_scene}: "),
            )
        except Exception as e:
            logger.exception("Unexpected error submitting scene %d for %s", next_scene, job_id)
            return self._fail(
                job_id,
                Phase.EXTENSION,
                PhaseError(
                    type="API_ERROR",
                    message=f"Scene {next_scene}: Render submission failed: {e}",
                    user_action="Retry this scene.",
                ),
            )

        def started(j: GenerationJob) -> None:
            j.extended_task_id = task_id
            j.extended_status = PhaseStatus.GENERATING
            j.extended_error = None
            j.extended_submitted_at = datetime.utcnow()

        job = apply_update(self.store, job_id, started)
        logger.info("Submitted scene %d/%d for %s (task %s)", next_scene, job.number_of_scenes, job_id, task_id)
        return job

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry_failed_phase(
        self, job_id: str, edited_prompt: str | None = None, edited_script: str | None = None
    ) -> GenerationJob:
        """Reset the failed phase (initial first, else extension) to pending and run it again."""
        job = self._require(job_id)
        if job.initial_status == PhaseStatus.FAILED:
            phase = Phase.INITIAL
        elif job.extended_status == PhaseStatus.FAILED:
            phase = Phase.EXTENSION
        else:
            raise ValidationError("No failed generation to retry")

        def reset(j: GenerationJob) -> None:
            if phase == Phase.INITIAL:
                j.initial_status = PhaseStatus.PENDING
                j.initial_error = None
                j.initial_task_id = None
                j.initial_submitted_at = None
            else:
                j.extended_status = PhaseStatus.PENDING
                j.extended_error = None
                j.extended_task_id = None
                j.extended_submitted_at = None

        apply_update(self.store, job_id, reset)
        logger.info("Retrying %s phase of %s", phase.value, job_id)
        if phase == Phase.INITIAL:
            return self.run_initial_phase(job_id, edited_prompt, edited_script)
        return self.run_extension_phase(job_id, edited_prompt, edited_script)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> GenerationJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def _fail(self, job_id: str, phase: Phase, error: PhaseError, refund: bool = True) -> GenerationJob:
        def mark(j: GenerationJob) -> None:
            if phase == Phase.INITIAL:
                j.initial_status = PhaseStatus.FAILED
                j.initial_error = error
            else:
                j.extended_status = PhaseStatus.FAILED
                j.extended_error = error

        job = apply_update(self.store, job_id, mark)
        if refund:
            refund_job(self.ledger, job_id, reason=error.message)
        return job
