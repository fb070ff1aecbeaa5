"""Render provider protocol and the request/update shapes it exchanges."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel

from bvg.schemas.models import GenerationMode


class RenderRequest(BaseModel):
    prompt: str
    image_url: str | None = None  # None => text-to-video
    aspect_ratio: str = "16:9"
    model: str = "veo3_fast"
    seed: int | None = None
    generation_mode: GenerationMode = GenerationMode.TEXT_2_VIDEO


class RenderState(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RenderUpdate(BaseModel):
    """Outcome of a render task, from a callback or a status poll."""

    task_id: str
    state: RenderState
    video_url: str | None = None
    error_message: str | None = None
    raw: dict[str, Any] = {}


class RenderProvider(Protocol):
    name: str

    def submit_render(self, request: RenderRequest) -> str:
        """Start a render; returns the provider task id. Raises ProviderError."""
        ...

    def extend_render(self, previous_task_id: str, prompt: str, duration_seconds: int, seed: int | None = None) -> str:
        """Continue a finished render with a new clip; returns the new task id."""
        ...

    def get_task_status(self, task_id: str) -> RenderUpdate:
        ...
