"""Tests for job creation, initial/extension submission and retry."""

import pytest

from bvg.errors import ProviderError, ProviderErrorType, ValidationError
from bvg.jobs import PhaseStatus
from bvg.render.prompts import seed_for
from bvg.schemas.models import BaseConfig


def _job(orchestrator, scenes=1, user="user_1", **overrides):
    config = BaseConfig(industry="Dental", city="Reno", story_idea="Smile in {city}", number_of_scenes=scenes, **overrides)
    return orchestrator.create_job(user, config)


class TestCreateJobs:
    def test_one_job_per_combination_with_pacing(self, orchestrator, job_store, base_config, sleeps):
        combos = [{"city": "Austin"}, {"city": "Denver"}, {"city": "Reno"}]
        ids = orchestrator.create_jobs("batch_x", "user_1", combos, base_config)
        assert len(ids) == 3
        jobs = job_store.list_for_batch("batch_x")
        assert [j.config.city for j in jobs] == ["Austin", "Denver", "Reno"]
        assert [j.variation_index for j in jobs] == [0, 1, 2]
        assert all(j.initial_status == PhaseStatus.PENDING for j in jobs)
        assert sleeps == [0.3, 0.3]

    def test_duplicate_slot_is_skipped_not_fatal(self, orchestrator, base_config):
        combos = [{"city": "Austin"}, {"city": "Denver"}]
        orchestrator.create_jobs("batch_x", "user_1", combos, base_config, indices=[0])
        ids = orchestrator.create_jobs("batch_x", "user_1", combos, base_config)
        assert len(ids) == 1

    def test_seed_is_derived_from_job_id(self, orchestrator):
        job = _job(orchestrator)
        assert job.seed == seed_for(job.job_id)
        assert 10000 <= job.seed <= 99999


class TestInitialPhase:
    def test_submits_scene_one(self, orchestrator, render_provider, ledger, fund):
        fund()
        job = _job(orchestrator, scenes=3, aspect_ratio="4:3")
        job = orchestrator.run_initial_phase(job.job_id)

        assert job.initial_status == PhaseStatus.GENERATING
        assert job.initial_task_id == "task_1"
        assert job.initial_submitted_at is not None
        assert len(job.scene_prompts) == 3

        _, request = render_provider.submitted[0]
        assert request.aspect_ratio == "16:9"
        assert request.seed == job.seed
        assert request.image_url is None
        assert 'AVATAR DIALOGUE: "Line 1 for Reno"' in request.prompt

        assert ledger.pending_reservation(job.job_id).credits_reserved == 3
        assert ledger.get_balance("user_1").available == 97

    def test_insufficient_credits_blocks_before_any_call(self, orchestrator, render_provider, prompt_generator):
        job = orchestrator.run_initial_phase(_job(orchestrator).job_id)
        assert job.initial_status == PhaseStatus.FAILED
        assert job.initial_error.type == "INSUFFICIENT_CREDITS"
        assert prompt_generator.calls == []
        assert render_provider.submitted == []

    def test_prompt_failure_stops_and_refunds(self, orchestrator, render_provider, prompt_generator, ledger, fund):
        fund()
        prompt_generator.error = RuntimeError("model overloaded")
        job = orchestrator.run_initial_phase(_job(orchestrator).job_id)
        assert job.initial_status == PhaseStatus.FAILED
        assert job.initial_error.message.startswith("AI prompt generation failed:")
        assert "model overloaded" in job.initial_error.message
        assert render_provider.submitted == []
        assert ledger.get_balance("user_1").available == 100
        assert ledger.pending_reservation(job.job_id) is None

    def test_provider_error_is_recorded_and_refunded(self, orchestrator, render_provider, ledger, fund):
        fund()
        render_provider.error = ProviderError(
            ProviderErrorType.RATE_LIMITED, "Too many requests", "Wait a minute and retry."
        )
        job = orchestrator.run_initial_phase(_job(orchestrator).job_id)
        assert job.initial_status == PhaseStatus.FAILED
        assert job.initial_error.type == "RATE_LIMITED"
        assert job.initial_error.user_action == "Wait a minute and retry."
        assert ledger.get_balance("user_1").available == 100

    def test_empty_scene_plan_fails_and_refunds(self, orchestrator, render_provider, prompt_generator, ledger, fund):
        fund()
        prompt_generator.scene_count = 0
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=2).job_id)
        assert job.initial_status == PhaseStatus.FAILED
        assert job.initial_error.type == "PROMPT_GENERATION"
        assert "no scene prompts" in job.initial_error.message
        assert render_provider.submitted == []
        assert ledger.get_balance("user_1").available == 100
        assert ledger.pending_reservation(job.job_id) is None

    def test_short_scene_plan_still_starts(self, orchestrator, handler, render_provider, prompt_generator, fund):
        fund()
        prompt_generator.scene_count = 1
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=3).job_id)
        assert job.initial_status == PhaseStatus.GENERATING
        assert len(job.scene_prompts) == 1

        handler.handle(render_provider.success(job.initial_task_id))
        job = orchestrator.run_extension_phase(job.job_id)
        assert job.extended_status == PhaseStatus.GENERATING
        assert "Continue the action from the previous scene" in render_provider.extended[0]["prompt"]

    def test_unexpected_submit_error_fails_and_refunds(self, orchestrator, render_provider, ledger, fund):
        fund()
        render_provider.error = ValueError("bad response body")
        job = orchestrator.run_initial_phase(_job(orchestrator).job_id)
        assert job.initial_status == PhaseStatus.FAILED
        assert job.initial_error.type == "API_ERROR"
        assert "bad response body" in job.initial_error.message
        assert ledger.get_balance("user_1").available == 100
        assert ledger.pending_reservation(job.job_id) is None

    def test_only_pending_jobs_start(self, orchestrator, fund):
        fund()
        job = _job(orchestrator)
        orchestrator.run_initial_phase(job.job_id)
        with pytest.raises(ValidationError):
            orchestrator.run_initial_phase(job.job_id)

    def test_reference_image_is_sent(self, orchestrator, render_provider, fund):
        fund()
        job = _job(orchestrator, image_url="https://img.example.com/agent.png")
        orchestrator.run_initial_phase(job.job_id)
        _, request = render_provider.submitted[0]
        assert request.image_url == "https://img.example.com/agent.png"


class TestExtensionPhase:
    def test_requires_completed_initial(self, orchestrator, fund):
        fund()
        job = _job(orchestrator, scenes=2)
        orchestrator.run_initial_phase(job.job_id)
        with pytest.raises(ValidationError):
            orchestrator.run_extension_phase(job.job_id)

    def test_extends_from_initial_task(self, orchestrator, handler, render_provider, fund):
        fund()
        job = _job(orchestrator, scenes=3)
        job = orchestrator.run_initial_phase(job.job_id)
        handler.handle(render_provider.success(job.initial_task_id))

        job = orchestrator.run_extension_phase(job.job_id)
        assert job.extended_status == PhaseStatus.GENERATING
        call = render_provider.extended[0]
        assert call["previous_task_id"] == "task_1"
        assert call["duration_seconds"] == 6
        assert call["seed"] == job.seed
        assert "Scene 2" in call["prompt"]

    def test_no_extension_past_last_scene(self, orchestrator, handler, render_provider, fund):
        fund()
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=1).job_id)
        handler.handle(render_provider.success(job.initial_task_id))
        with pytest.raises(ValidationError):
            orchestrator.run_extension_phase(job.job_id)

    def test_provider_failure_is_prefixed_with_scene(self, orchestrator, handler, render_provider, fund):
        fund()
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=2).job_id)
        handler.handle(render_provider.success(job.initial_task_id))
        render_provider.error = ProviderError(ProviderErrorType.INVALID_PARAMS, "Bad prompt", "Edit and retry.")
        job = orchestrator.run_extension_phase(job.job_id)
        assert job.extended_status == PhaseStatus.FAILED
        assert job.extended_error.message == "Scene 2: Bad prompt"

    def test_unexpected_extend_error_fails_and_refunds(self, orchestrator, handler, render_provider, ledger, fund):
        fund()
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=2).job_id)
        handler.handle(render_provider.success(job.initial_task_id))
        render_provider.error = KeyError("taskId")
        job = orchestrator.run_extension_phase(job.job_id)
        assert job.extended_status == PhaseStatus.FAILED
        assert job.extended_error.type == "API_ERROR"
        assert job.extended_error.message.startswith("Scene 2: Render submission failed")
        assert ledger.pending_reservation(job.job_id) is None
        assert ledger.get_balance("user_1").available == 100


class TestRetry:
    def test_nothing_to_retry(self, orchestrator, fund):
        fund()
        job = _job(orchestrator)
        with pytest.raises(ValidationError, match="No failed generation to retry"):
            orchestrator.retry_failed_phase(job.job_id)

    def test_retry_initial_with_edited_prompt(self, orchestrator, handler, render_provider, fund):
        fund()
        job = orchestrator.run_initial_phase(_job(orchestrator).job_id)
        handler.handle(render_provider.failure(job.initial_task_id, "Internal error"))

        job = orchestrator.retry_failed_phase(job.job_id, edited_prompt="A calm office at dusk")
        assert job.initial_status == PhaseStatus.GENERATING
        assert job.initial_error is None
        assert job.initial_task_id == "task_2"
        assert job.scene_prompts[0].visual_prompt == "A calm office at dusk"
        _, request = render_provider.submitted[-1]
        assert "A calm office at dusk" in request.prompt

    def test_retry_regenerates_missing_prompts(self, orchestrator, prompt_generator, fund):
        fund()
        prompt_generator.error = RuntimeError("timeout")
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=2).job_id)
        assert job.scene_prompts == []

        prompt_generator.error = None
        job = orchestrator.retry_failed_phase(job.job_id)
        assert job.initial_status == PhaseStatus.GENERATING
        assert len(job.scene_prompts) == 2
        assert len(prompt_generator.calls) == 2

    def test_retry_extension_edits_the_scene_being_produced(self, orchestrator, handler, render_provider, fund):
        fund()
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=3).job_id)
        handler.handle(render_provider.success(job.initial_task_id))
        job = orchestrator.run_extension_phase(job.job_id)
        handler.handle(render_provider.failure(job.extended_task_id, "AUDIO_FILTERED"))

        job = orchestrator.retry_failed_phase(job.job_id, edited_script="Welcome home.")
        assert job.initial_status == PhaseStatus.COMPLETED
        assert job.extended_status == PhaseStatus.GENERATING
        assert job.extended_error is None
        assert job.scene_prompts[1].script == "Welcome home."
        assert render_provider.extended[-1]["previous_task_id"] == job.initial_task_id

    def test_retry_leaves_completed_initial_alone(self, orchestrator, handler, render_provider, fund):
        fund()
        job = orchestrator.run_initial_phase(_job(orchestrator, scenes=2).job_id)
        handler.handle(render_provider.success(job.initial_task_id))
        job = orchestrator.run_extension_phase(job.job_id)
        handler.handle(render_provider.failure(job.extended_task_id))
        before = job.initial_task_id

        job = orchestrator.retry_failed_phase(job.job_id)
        assert job.initial_task_id == before
        assert len(job.video_segments) == 1


class TestProcessJobs:
    def test_counts_and_pacing(self, orchestrator, render_provider, base_config, sleeps, fund):
        fund(credits=2)
        ids = orchestrator.create_jobs("b", "user_1", [{"city": c} for c in ("A", "B", "C")], base_config)
        sleeps.clear()
        counts = orchestrator.process_jobs(ids)
        assert counts.started == 2
        assert counts.failed == 1
        assert sleeps == [2.0, 2.0]
        assert len(render_provider.submitted) == 2
