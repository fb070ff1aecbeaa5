"""Scene planning (the prompt-generation collaborator)."""

from bvg.scenes.planner import (
    LLMScenePlanner,
    PromptGenerator,
    ScenePlan,
    build_planner_prompt,
    get_prompt_generator,
    plan_to_scenes,
)

__all__ = [
    "LLMScenePlanner",
    "PromptGenerator",
    "ScenePlan",
    "build_planner_prompt",
    "get_prompt_generator",
    "plan_to_scenes",
]
