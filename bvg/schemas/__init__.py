"""Pydantic models shared across the expander, orchestrator and stores."""

from bvg.schemas.models import (
    TEXT_ONLY_SENTINEL,
    BaseConfig,
    GenerationMode,
    JobConfig,
    ScenePrompt,
    Variable,
    VideoSegment,
)

__all__ = [
    "TEXT_ONLY_SENTINEL",
    "BaseConfig",
    "GenerationMode",
    "JobConfig",
    "ScenePrompt",
    "Variable",
    "VideoSegment",
]
