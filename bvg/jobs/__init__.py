"""Generation job and batch storage and retrieval."""

from bvg.jobs.models import (
    Batch,
    BatchStatus,
    GenerationJob,
    OverallStatus,
    Phase,
    PhaseError,
    PhaseStatus,
    overall_status,
)
from bvg.jobs.store import (
    FileJobStore,
    JobStore,
    apply_batch_update,
    apply_update,
    get_job_store,
    _new_batch_id,
    _new_job_id,
)

__all__ = [
    "Batch",
    "BatchStatus",
    "FileJobStore",
    "GenerationJob",
    "JobStore",
    "OverallStatus",
    "Phase",
    "PhaseError",
    "PhaseStatus",
    "apply_batch_update",
    "apply_update",
    "get_job_store",
    "overall_status",
    "_new_batch_id",
    "_new_job_id",
]
