"""Pydantic models: variables, batch templates, per-job config snapshots and scene plans."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Stored in place of an image URL when a job renders from text only
TEXT_ONLY_SENTINEL = "text-only-mode"


class Variable(BaseModel):
    """A named variable; each value yields one branch of the cross-product."""

    name: str  # substitution key, used as {name} in story templates
    label: str = ""
    values: list[str] = []


class GenerationMode(str, Enum):
    REFERENCE_2_VIDEO = "REFERENCE_2_VIDEO"
    TEXT_2_VIDEO = "TEXT_2_VIDEO"


class BaseConfig(BaseModel):
    """Immutable per-batch template shared by every job in the batch."""

    model_config = ConfigDict(frozen=True)

    industry: str = ""
    city: str = ""
    story_idea: str = ""  # may contain {variable} placeholders
    model: str = "veo3_fast"
    aspect_ratio: str = "16:9"
    number_of_scenes: int = Field(default=1, ge=1, le=10)
    image_url: str | None = None  # None => text-only generation
    avatar_name: str | None = None
    avatar_description: str | None = None


class JobConfig(BaseModel):
    """Concrete config snapshot for one job (variables already applied)."""

    avatar_name: str = ""
    avatar_description: str | None = None
    industry: str = ""
    city: str = ""
    story_idea: str = ""
    image_url: str = TEXT_ONLY_SENTINEL
    model: str = "veo3_fast"
    aspect_ratio: str = "16:9"
    number_of_scenes: int = Field(default=1, ge=1, le=10)
    generation_mode: GenerationMode = GenerationMode.TEXT_2_VIDEO
    variable_values: dict[str, str] = {}

    @property
    def reference_image(self) -> str | None:
        """Image URL to send to the provider, or None in text-only mode."""
        if self.generation_mode != GenerationMode.REFERENCE_2_VIDEO:
            return None
        if not self.image_url or self.image_url == TEXT_ONLY_SENTINEL:
            return None
        return self.image_url


class ScenePrompt(BaseModel):
    scene_number: int
    visual_prompt: str
    script: str = ""  # spoken dialogue; empty for silent scenes


class VideoSegment(BaseModel):
    """One rendered clip. Segment 0 is the initial render."""

    url: str
    duration_ms: int
    type: Literal["initial", "extended"]
    scene: int
    task_id: str | None = None  # provider task that rendered this clip
    completed_at: datetime = Field(default_factory=datetime.utcnow)
    metadata: dict[str, Any] = {}
