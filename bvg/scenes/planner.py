"""Scene planning: turn a job's config snapshot into per-scene visual prompts and scripts."""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel

from bvg.llm import LLMProvider, get_provider
from bvg.schemas.models import JobConfig, ScenePrompt

logger = logging.getLogger(__name__)


class PromptGenerator(Protocol):
    def generate_prompts(self, config: JobConfig) -> list[ScenePrompt]: ...


SYSTEM_PROMPT = """You are a video director writing prompts for an AI video model that renders
short clips of a spokesperson talking to camera.

For each scene return a visual prompt (subject, setting, action, camera framing,
lighting) and a short spoken script. Each scene is 6-8 seconds long, so a script
is one or two natural sentences (at most ~20 words). Keep the same spokesperson,
wardrobe and setting across scenes. No on-screen text, captions or logos.
Avoid medical, legal or financial claims and brand names."""


class PlannedScene(BaseModel):
    scene_number: int = 0
    prompt: str = ""
    script: str = ""


class ScenePlan(BaseModel):
    """LLM output: either a single ``prompt`` (one scene) or a ``scenes`` list."""

    prompt: str | None = None
    script: str = ""
    scenes: list[PlannedScene] = []


def build_planner_prompt(config: JobConfig) -> str:
    lines = [
        f"Spokesperson: {config.avatar_name or 'a professional presenter'}",
        f"Industry: {config.industry or 'general business'}",
    ]
    if config.city:
        lines.append(f"City: {config.city}")
    if config.avatar_description:
        lines.append(f"Spokesperson appearance: {config.avatar_description}")
    if config.story_idea:
        lines.append(f"Story idea: {config.story_idea}")
    lines.append(f"Aspect ratio: {config.aspect_ratio}")
    if config.reference_image:
        lines.append("A reference photo of the spokesperson is attached; describe them consistently.")
    if config.number_of_scenes == 1:
        shape = 'Return {"prompt": "...", "script": "..."} for a single scene.'
    else:
        shape = (
            f'Return {{"scenes": [{{"scene_number": 1, "prompt": "...", "script": "..."}}, ...]}} '
            f"with exactly {config.number_of_scenes} scenes that continue one another."
        )
    return "\n".join(lines) + "\n\n" + shape


def plan_to_scenes(plan: ScenePlan, expected: int) -> list[ScenePrompt]:
    if plan.scenes:
        scenes = [
            ScenePrompt(
                scene_number=s.scene_number or i + 1,
                visual_prompt=s.prompt,
                script=s.script,
            )
            for i, s in enumerate(plan.scenes)
            if s.prompt
        ]
    elif plan.prompt:
        scenes = [ScenePrompt(scene_number=1, visual_prompt=plan.prompt, script=plan.script)]
    else:
        scenes = []
    if not scenes:
        raise ValueError("Prompt generator returned no scenes")
    if len(scenes) != expected:
        logger.warning("Expected %d scene prompts, got %d; continuing", expected, len(scenes))
    return scenes


class LLMScenePlanner:
    """Prompt generator backed by an LLM provider."""

    def __init__(self, llm: LLMProvider):
        self._llm = llm

    def generate_prompts(self, config: JobConfig) -> list[ScenePrompt]:
        prompt = build_planner_prompt(config)
        plan = self._llm.complete_structured(prompt, ScenePlan, image_url=config.reference_image)
        return plan_to_scenes(plan, config.number_of_scenes)


def get_prompt_generator(provider_name: str | None = None) -> PromptGenerator:
    """Scene planner on the configured LLM provider."""
    from bvg.config import get_settings

    settings = get_settings()
    name = (provider_name or settings.bvg_llm_provider).lower()
    if name == "anthropic":
        api_key, model = settings.anthropic_api_key, settings.bvg_anthropic_model
    else:
        api_key, model = settings.openai_api_key, settings.bvg_openai_model
    if not api_key:
        logger.warning("No API key configured for LLM provider '%s'", name)
    llm = get_provider(name, api_key=api_key, model=model, system_prompt=SYSTEM_PROMPT)
    return LLMScenePlanner(llm)
