"""Credit holds for generation jobs: reserve before work starts, settle on the terminal outcome."""

from __future__ import annotations

import logging

from bvg.billing.ledger import CreditLedger
from bvg.billing.models import VideoJob
from bvg.billing.pricing import estimate_job_minutes
from bvg.config import Settings
from bvg.errors import BVGError
from bvg.jobs.models import GenerationJob

logger = logging.getLogger(__name__)


def job_minutes(job: GenerationJob, settings: Settings) -> float:
    return estimate_job_minutes(
        job.number_of_scenes,
        settings.initial_segment_seconds,
        settings.extension_segment_seconds,
    )


def ensure_reservation(
    ledger: CreditLedger, job: GenerationJob, provider: str, settings: Settings
) -> VideoJob:
    """Return the job's pending hold, creating one if none exists. Raises InsufficientCreditsError."""
    existing = ledger.pending_reservation(job.job_id)
    if existing is not None:
        return existing
    return ledger.reserve(
        job.user_id,
        job.job_id,
        provider,
        job_minutes(job, settings),
        metadata={"batch_id": job.batch_id, "scenes": job.number_of_scenes},
    )


def charge_job(ledger: CreditLedger, job: GenerationJob) -> VideoJob | None:
    """Charge the job's hold (estimate fallback). The job state is already saved, so errors are logged."""
    reservation = ledger.pending_reservation(job.job_id)
    if reservation is None:
        logger.warning("No pending reservation to charge for %s", job.job_id)
        return None
    try:
        return ledger.charge(reservation.video_job_id)
    except BVGError:
        logger.exception("Charging %s failed", job.job_id)
        return None


def refund_job(ledger: CreditLedger, job_id: str, reason: str) -> VideoJob | None:
    reservation = ledger.pending_reservation(job_id)
    if reservation is None:
        return None
    try:
        return ledger.refund(reservation.video_job_id, reason=reason)
    except BVGError:
        logger.exception("Refunding %s failed", job_id)
        return None
