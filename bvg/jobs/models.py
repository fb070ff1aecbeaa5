"""Generation job and batch schemas, phase statuses, and the overall-status projection."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from bvg.errors import ProviderError
from bvg.schemas.models import BaseConfig, JobConfig, ScenePrompt, VideoSegment


class PhaseStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class Phase(str, Enum):
    INITIAL = "initial"
    EXTENSION = "extension"
    FINAL = "final"


class PhaseError(BaseModel):
    """Failure recorded on one phase of a job."""

    type: str  # ProviderErrorType value, or INSUFFICIENT_CREDITS / PROMPT_GENERATION / STITCH_ERROR
    message: str
    user_action: str = ""
    detail: str | None = None

    @classmethod
    def from_provider_error(cls, err: ProviderError, prefix: str = "") -> "PhaseError":
        return cls(
            type=err.type.value,
            message=f"{prefix}{err.message}",
            user_action=err.user_action,
            detail=err.detail,
        )

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n\nDetails: {self.detail}"
        return self.message


class GenerationJob(BaseModel):
    """One video: three independent phase machines plus the segments rendered so far."""

    job_id: str = ""
    batch_id: str | None = None
    user_id: str
    variation_index: int | None = None  # originating combination index within the batch
    config: JobConfig = Field(default_factory=JobConfig)
    scene_prompts: list[ScenePrompt] = []
    current_scene: int = 1  # scenes completed so far once the initial render lands
    video_segments: list[VideoSegment] = []

    initial_status: PhaseStatus = PhaseStatus.PENDING
    initial_error: PhaseError | None = None
    initial_task_id: str | None = None
    initial_submitted_at: datetime | None = None

    extended_status: PhaseStatus = PhaseStatus.PENDING
    extended_error: PhaseError | None = None
    extended_task_id: str | None = None
    extended_submitted_at: datetime | None = None

    final_video_status: PhaseStatus = PhaseStatus.PENDING
    final_video_error: PhaseError | None = None
    final_video_url: str | None = None
    is_final: bool = False

    seed: int | None = None
    is_sample: bool = False
    version: int = 0
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def number_of_scenes(self) -> int:
        return self.config.number_of_scenes

    @property
    def last_task_id(self) -> str | None:
        """Task the next extension continues from: the one that rendered the latest segment."""
        for segment in reversed(self.video_segments):
            if segment.task_id:
                return segment.task_id
        return self.extended_task_id or self.initial_task_id

    @property
    def has_all_scenes(self) -> bool:
        return len(self.video_segments) >= self.number_of_scenes

    def phase_for_task(self, task_id: str) -> Phase | None:
        if task_id and task_id == self.initial_task_id:
            return Phase.INITIAL
        if task_id and task_id == self.extended_task_id:
            return Phase.EXTENSION
        return None


class OverallStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    AWAITING_EXTENSION = "awaiting_extension"
    READY_TO_STITCH = "ready_to_stitch"
    STITCHING = "stitching"
    COMPLETED = "completed"
    FAILED = "failed"


def overall_status(job: GenerationJob) -> OverallStatus:
    """Single status derived from the three phase fields. Never stored."""
    phases = (job.initial_status, job.extended_status, job.final_video_status)
    if job.is_final or job.final_video_status == PhaseStatus.COMPLETED:
        return OverallStatus.COMPLETED
    if PhaseStatus.FAILED in phases:
        return OverallStatus.FAILED
    if job.final_video_status == PhaseStatus.GENERATING:
        return OverallStatus.STITCHING
    if PhaseStatus.GENERATING in (job.initial_status, job.extended_status):
        return OverallStatus.GENERATING
    if job.initial_status == PhaseStatus.COMPLETED:
        if not job.has_all_scenes:
            return OverallStatus.AWAITING_EXTENSION
        if len(job.video_segments) >= 2:
            return OverallStatus.READY_TO_STITCH
        return OverallStatus.COMPLETED
    return OverallStatus.PENDING


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

class BatchStatus(str, Enum):
    PROCESSING = "processing"
    PAUSED_FOR_REVIEW = "paused_for_review"
    COMPLETED = "completed"
    FAILED = "failed"


class Batch(BaseModel):
    """Jobs created from one submission. Combinations are kept so resume can recreate the rest."""

    batch_id: str = ""
    user_id: str
    name: str = ""
    base_config: BaseConfig = Field(default_factory=BaseConfig)
    input_combinations: list[dict[str, str]] = []
    status: BatchStatus = BatchStatus.PROCESSING
    is_paused: bool = False
    sample_size: int | None = None
    started: int = 0
    failed: int = 0
    version: int = 0
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total(self) -> int:
        return len(self.input_combinations)
