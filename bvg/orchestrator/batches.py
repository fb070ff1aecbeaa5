"""Batches: expand variables into jobs, run a review sample, resume the rest, bulk retry and stitch."""

from __future__ import annotations

import logging
import time
from typing import Callable

from pydantic import BaseModel

from bvg.errors import BVGError, JobNotFoundError, StitchError, ValidationError
from bvg.jobs.models import Batch, BatchStatus, OverallStatus, PhaseStatus, overall_status
from bvg.jobs.store import JobStore, _new_batch_id, apply_batch_update
from bvg.orchestrator.jobs import JobOrchestrator
from bvg.schemas.models import BaseConfig, Variable
from bvg.stitch.pipeline import StitchPipeline
from bvg.variables.expander import Combination, expand

logger = logging.getLogger(__name__)


class BatchRunResult(BaseModel):
    batch_id: str
    status: BatchStatus
    total: int
    created: int = 0
    started: int = 0
    failed: int = 0


class BulkResult(BaseModel):
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


class BatchProgress(BaseModel):
    batch_id: str
    status: BatchStatus
    total: int
    created: int
    by_status: dict[str, int]


def refresh_batch_status(store: JobStore, batch_id: str) -> Batch | None:
    """Mark a processing batch completed once every combination has a finished job."""
    batch = store.get_batch(batch_id)
    if batch is None or batch.status != BatchStatus.PROCESSING:
        return batch
    jobs = store.list_for_batch(batch_id)
    if len(jobs) < batch.total:
        return batch
    if not all(overall_status(job) == OverallStatus.COMPLETED for job in jobs):
        return batch

    def complete(b: Batch) -> bool:
        if b.status != BatchStatus.PROCESSING:
            return False
        b.status = BatchStatus.COMPLETED
        return True

    logger.info("Batch %s completed", batch_id)
    return apply_batch_update(store, batch_id, complete)


class BatchService:
    def __init__(
        self,
        store: JobStore,
        orchestrator: JobOrchestrator,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self._sleep = sleep

    def create_batch(
        self,
        user_id: str,
        base_config: BaseConfig,
        variables: list[Variable] | None = None,
        combinations: list[Combination] | None = None,
        sample_size: int | None = None,
        name: str = "",
    ) -> Batch:
        """Store a batch. Pass explicit ``combinations`` or ``variables`` to expand."""
        if combinations is None:
            combinations = expand(variables or [])
        if not combinations:
            raise ValidationError("A batch needs at least one combination")
        if sample_size is not None and sample_size < 0:
            raise ValidationError("sample_size cannot be negative")
        batch = Batch(
            batch_id=_new_batch_id(),
            user_id=user_id,
            name=name,
            base_config=base_config,
            input_combinations=combinations,
            sample_size=sample_size or None,
        )
        return self.store.create_batch(batch)

    def run_batch(self, batch_id: str) -> BatchRunResult:
        """Create jobs and submit their initial renders.

        With a sample size below the batch size only the first ``sample_size``
        combinations run and the batch pauses for review.
        """
        batch = self._require(batch_id)
        sampling = batch.sample_size is not None and 0 < batch.sample_size < batch.total
        limit = batch.sample_size if sampling else batch.total

        job_ids = self.orchestrator.create_jobs(
            batch.batch_id,
            batch.user_id,
            batch.input_combinations,
            batch.base_config,
            indices=range(limit),
            is_sample=sampling,
        )
        counts = self.orchestrator.process_jobs(job_ids)
        failed = counts.failed + (limit - len(job_ids))

        def record(b: Batch) -> None:
            b.started += counts.started
            b.failed += failed
            if sampling:
                b.status = BatchStatus.PAUSED_FOR_REVIEW
                b.is_paused = True
            elif counts.started == 0:
                b.status = BatchStatus.FAILED
            else:
                b.status = BatchStatus.PROCESSING

        batch = apply_batch_update(self.store, batch_id, record)
        logger.info(
            "Batch %s: %d started, %d failed of %d%s",
            batch_id, counts.started, failed, limit, " (sample)" if sampling else "",
        )
        return BatchRunResult(
            batch_id=batch_id,
            status=batch.status,
            total=batch.total,
            created=len(job_ids),
            started=counts.started,
            failed=failed,
        )

    def resume_batch(self, batch_id: str) -> BatchRunResult:
        """Create and start jobs for every combination that has none yet."""
        batch = self._require(batch_id)
        if not (batch.is_paused or batch.status == BatchStatus.PAUSED_FOR_REVIEW):
            raise ValidationError(f"Batch {batch_id} is not paused")

        missing = [i for i in range(batch.total) if self.store.get_for_index(batch_id, i) is None]
        job_ids = self.orchestrator.create_jobs(
            batch.batch_id,
            batch.user_id,
            batch.input_combinations,
            batch.base_config,
            indices=missing,
        )
        counts = self.orchestrator.process_jobs(job_ids)
        failed = counts.failed + (len(missing) - len(job_ids))

        def record(b: Batch) -> None:
            b.started += counts.started
            b.failed += failed
            b.is_paused = False
            b.status = BatchStatus.FAILED if b.started == 0 else BatchStatus.PROCESSING

        batch = apply_batch_update(self.store, batch_id, record)
        logger.info("Resumed batch %s: %d new jobs, %d started", batch_id, len(job_ids), counts.started)
        return BatchRunResult(
            batch_id=batch_id,
            status=batch.status,
            total=batch.total,
            created=len(job_ids),
            started=counts.started,
            failed=failed,
        )

    def retry_failed_jobs(self, batch_id: str) -> BulkResult:
        """Retry the failed phase of every failed job in the batch, pacing requests."""
        self._require(batch_id)
        result = BulkResult()
        attempted = 0
        for job in self.store.list_for_batch(batch_id):
            if PhaseStatus.FAILED not in (job.initial_status, job.extended_status):
                continue
            if attempted and self.settings.retry_delay_seconds:
                self._sleep(self.settings.retry_delay_seconds)
            attempted += 1
            try:
                retried = self.orchestrator.retry_failed_phase(job.job_id)
            except BVGError as e:
                logger.warning("Retry of %s failed: %s", job.job_id, e)
                result.failed += 1
                continue
            if PhaseStatus.GENERATING in (retried.initial_status, retried.extended_status):
                result.succeeded += 1
            else:
                result.failed += 1

        def reopen(b: Batch) -> bool:
            if result.succeeded == 0 or b.status != BatchStatus.FAILED:
                return False
            b.status = BatchStatus.PROCESSING
            return True

        apply_batch_update(self.store, batch_id, reopen)
        return result

    def stitch_ready_jobs(
        self, batch_id: str, stitcher: StitchPipeline, trim_seconds: float | None = None
    ) -> BulkResult:
        """Stitch every job whose segments are all rendered and that has no final video yet."""
        self._require(batch_id)
        result = BulkResult()
        for job in self.store.list_for_batch(batch_id):
            if overall_status(job) != OverallStatus.READY_TO_STITCH:
                result.skipped += 1
                continue
            try:
                stitcher.stitch(job.job_id, trim_seconds)
            except StitchError as e:
                logger.warning("Stitching %s failed: %s", job.job_id, e)
                result.failed += 1
                continue
            result.succeeded += 1
        refresh_batch_status(self.store, batch_id)
        return result

    def progress(self, batch_id: str) -> BatchProgress:
        batch = self._require(batch_id)
        jobs = self.store.list_for_batch(batch_id)
        by_status: dict[str, int] = {}
        for job in jobs:
            key = overall_status(job).value
            by_status[key] = by_status.get(key, 0) + 1
        return BatchProgress(
            batch_id=batch_id,
            status=batch.status,
            total=batch.total,
            created=len(jobs),
            by_status=by_status,
        )

    def _require(self, batch_id: str) -> Batch:
        batch = self.store.get_batch(batch_id)
        if batch is None:
            raise JobNotFoundError(f"Batch not found: {batch_id}")
        return batch
