"""Tests for render prompt builders and scene planning."""

import pytest

from bvg.render import build_extension_prompt, build_initial_prompt, normalize_aspect_ratio, seed_for
from bvg.scenes.planner import LLMScenePlanner, PlannedScene, ScenePlan, build_planner_prompt, plan_to_scenes
from bvg.schemas.models import GenerationMode, JobConfig, ScenePrompt


class TestSeed:
    def test_deterministic_and_in_range(self):
        assert seed_for("gen_123") == seed_for("gen_123")
        for job_id in ("gen_a", "gen_zzzzzzzzzzzzzzzzzzzzzzzz", "", "x" * 200):
            assert 10000 <= seed_for(job_id) <= 99999

    def test_differs_between_jobs(self):
        assert seed_for("gen_1") != seed_for("gen_2")


class TestAspectRatio:
    @pytest.mark.parametrize("value", ["16:9", "9:16"])
    def test_supported_kept(self, value):
        assert normalize_aspect_ratio(value) == value

    @pytest.mark.parametrize("value", ["4:3", "", None, "1:1"])
    def test_others_fall_back(self, value):
        assert normalize_aspect_ratio(value) == "16:9"


class TestRenderPrompts:
    def test_initial_prompt_includes_dialogue_and_appearance(self):
        config = JobConfig(avatar_name="Maya", avatar_description="Short grey hair, navy blazer", industry="Dental")
        prompt = build_initial_prompt(config, ScenePrompt(scene_number=1, visual_prompt="Bright clinic", script="Hi there."))
        assert "NO ON-SCREEN TEXT" in prompt
        assert "Maya's voice" in prompt
        assert "SPOKESPERSON VISUAL: Short grey hair, navy blazer" in prompt
        assert 'AVATAR DIALOGUE: "Hi there."' in prompt
        assert prompt.index("Bright clinic") < prompt.index("AVATAR DIALOGUE")

    def test_initial_prompt_silent_scene(self):
        prompt = build_initial_prompt(JobConfig(), ScenePrompt(scene_number=1, visual_prompt="Skyline"))
        assert "AVATAR DIALOGUE" not in prompt
        assert "SPOKESPERSON VISUAL" not in prompt

    def test_extension_prompt_timing_windows(self):
        prompt = build_extension_prompt(
            JobConfig(avatar_name="Maya"),
            ScenePrompt(scene_number=2, visual_prompt="Walks to the window", script="Look at this view."),
            6,
        )
        assert "Duration: 6 seconds total." in prompt
        assert "Seconds 3-4: begin slowing" in prompt
        assert "Seconds 5-6: hold nearly still" in prompt
        assert "Complete all dialogue by second 5" in prompt
        assert '"Look at this view."' in prompt
        assert "Walks to the window" in prompt


class TestScenePlanner:
    def test_single_scene_plan(self):
        scenes = plan_to_scenes(ScenePlan(prompt="Office", script="Hello"), 1)
        assert scenes == [ScenePrompt(scene_number=1, visual_prompt="Office", script="Hello")]

    def test_multi_scene_plan_drops_empty(self):
        plan = ScenePlan(
            scenes=[
                PlannedScene(scene_number=1, prompt="A", script="a"),
                PlannedScene(prompt="B"),
                PlannedScene(scene_number=3, prompt=""),
            ]
        )
        scenes = plan_to_scenes(plan, 3)
        assert [s.visual_prompt for s in scenes] == ["A", "B"]
        assert scenes[1].scene_number == 2

    def test_empty_plan_raises(self):
        with pytest.raises(ValueError):
            plan_to_scenes(ScenePlan(), 2)

    def test_planner_prompt_shape(self):
        single = build_planner_prompt(JobConfig(city="Reno", story_idea="Tour"))
        assert "City: Reno" in single
        assert '{"prompt": "...", "script": "..."}' in single
        multi = build_planner_prompt(JobConfig(number_of_scenes=3))
        assert "exactly 3 scenes" in multi

    def test_reference_image_passed_to_llm(self):
        class StubLLM:
            def __init__(self):
                self.calls = []

            def complete_structured(self, prompt, schema, image_url=None):
                self.calls.append((prompt, schema, image_url))
                return schema(prompt="Clinic", script="Welcome")

        llm = StubLLM()
        config = JobConfig(image_url="https://img/a.png", generation_mode=GenerationMode.REFERENCE_2_VIDEO)
        scenes = LLMScenePlanner(llm).generate_prompts(config)

        assert scenes[0].visual_prompt == "Clinic"
        prompt, schema, image_url = llm.calls[0]
        assert schema is ScenePlan
        assert image_url == "https://img/a.png"
        assert "reference photo" in prompt
