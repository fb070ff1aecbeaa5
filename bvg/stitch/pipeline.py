"""Stitching pipeline: re-host every segment, then compose one spliced final video."""

from __future__ import annotations

import logging

from bvg.errors import JobNotFoundError, StitchError, ValidationError
from bvg.jobs.models import GenerationJob, PhaseError, PhaseStatus
from bvg.jobs.store import JobStore, apply_update
from bvg.stitch.base import (
    MAX_TRIM_SECONDS,
    MIN_TRIM_SECONDS,
    MediaHost,
    SpliceLayer,
    segment_public_id,
)

logger = logging.getLogger(__name__)


def validate_trim(trim_seconds: float | None) -> float | None:
    if trim_seconds is None:
        return None
    if not MIN_TRIM_SECONDS <= trim_seconds <= MAX_TRIM_SECONDS:
        raise ValidationError(
            f"trim_seconds must be between {MIN_TRIM_SECONDS} and {MAX_TRIM_SECONDS}, got {trim_seconds}"
        )
    return trim_seconds


def check_segments(job: GenerationJob) -> None:
    """Raise a StitchError naming the offending segment when the job cannot be stitched."""
    count = len(job.video_segments)
    if count < 2:
        raise StitchError(
            f"Need at least 2 video segments to stitch. Found {count} segment(s).",
            step="validate",
        )
    for index, segment in enumerate(job.video_segments):
        if not segment.url:
            raise StitchError(
                f"Segment {index} is missing a URL", step="validate", segment_index=index
            )


class StitchPipeline:
    def __init__(self, store: JobStore, host: MediaHost):
        self._store = store
        self._host = host

    def stitch(self, job_id: str, trim_seconds: float | None = None) -> GenerationJob:
        """Stitch a job's segments into its final video.

        Precondition failures raise before anything is stored or fetched.
        Later failures mark ``final_video_status`` failed and re-raise.
        """
        trim = validate_trim(trim_seconds)
        job = self._store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        check_segments(job)

        def start(j: GenerationJob) -> None:
            j.final_video_status = PhaseStatus.GENERATING
            j.final_video_error = None

        job = apply_update(self._store, job_id, start)
        logger.info("Stitching %d segments for %s (trim=%s)", len(job.video_segments), job_id, trim)

        try:
            final_url = self._compose(job, trim)
        except StitchError as e:
            logger.error("Stitch failed for %s at %s: %s", job_id, e.step, e)
            error = PhaseError(
                type="STITCH_ERROR",
                message=str(e),
                user_action="Run stitching again; segments are re-uploaded under the same ids.",
                detail=f"step={e.step}" + (f", segment={e.segment_index}" if e.segment_index is not None else ""),
            )

            def fail(j: GenerationJob) -> None:
                j.final_video_status = PhaseStatus.FAILED
                j.final_video_error = error

            apply_update(self._store, job_id, fail)
            raise

        def finish(j: GenerationJob) -> None:
            j.final_video_url = final_url
            j.final_video_status = PhaseStatus.COMPLETED
            j.final_video_error = None
            j.is_final = True

        job = apply_update(self._store, job_id, finish)
        logger.info("Final video for %s: %s", job_id, final_url)
        return job

    def _compose(self, job: GenerationJob, trim: float | None) -> str:
        asset_ids: list[str] = []
        for index, segment in enumerate(job.video_segments):
            try:
                asset_ids.append(
                    self._host.upload_for_transform(segment.url, segment_public_id(job.job_id, index))
                )
            except StitchError as e:
                raise StitchError(f"Segment {index}: {e}", step=e.step, segment_index=index) from e
            except Exception as e:
                raise StitchError(f"Segment {index}: upload failed: {e}", step="upload", segment_index=index) from e
        layers = [SpliceLayer(asset_id=asset_id, trim_seconds=trim) for asset_id in asset_ids[1:]]
        try:
            return self._host.compose(asset_ids[0], layers)
        except StitchError:
            raise
        except Exception as e:
            raise StitchError(f"Compose failed: {e}", step="compose") from e
