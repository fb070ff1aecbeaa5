"""Fail renders that never reported back, releasing their credit holds."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from bvg.billing.ledger import CreditLedger
from bvg.errors import timeout_error
from bvg.jobs.models import GenerationJob, PhaseError, PhaseStatus
from bvg.jobs.store import JobStore, apply_update
from bvg.orchestrator.settlement import refund_job

logger = logging.getLogger(__name__)


def _stalled(submitted_at: datetime | None, fallback: datetime, cutoff: datetime) -> bool:
    return (submitted_at or fallback) < cutoff


def sweep_stalled_jobs(
    store: JobStore,
    ledger: CreditLedger,
    timeout_minutes: int,
    now: datetime | None = None,
) -> list[str]:
    """Mark phases generating for longer than ``timeout_minutes`` as TIMEOUT failures. Returns the job ids."""
    cutoff = (now or datetime.utcnow()) - timedelta(minutes=timeout_minutes)
    error = timeout_error(timeout_minutes)
    swept: list[str] = []

    for job in store.list_generating():
        changed: dict = {}

        def mutate(j: GenerationJob) -> bool:
            changed.clear()
            if j.initial_status == PhaseStatus.GENERATING and _stalled(j.initial_submitted_at, j.updated_at, cutoff):
                j.initial_status = PhaseStatus.FAILED
                j.initial_error = PhaseError.from_provider_error(error)
                changed["initial"] = True
            if j.extended_status == PhaseStatus.GENERATING and _stalled(j.extended_submitted_at, j.updated_at, cutoff):
                j.extended_status = PhaseStatus.FAILED
                j.extended_error = PhaseError.from_provider_error(error, prefix=f"Scene {j.current_scene + 1}: ")
                changed["extension"] = True
            return bool(changed)

        apply_update(store, job.job_id, mutate)
        if changed:
            logger.warning("Render for %s timed out after %d minutes (%s)", job.job_id, timeout_minutes, ", ".join(changed))
            refund_job(ledger, job.job_id, reason=f"timed out after {timeout_minutes} minutes")
            swept.append(job.job_id)
    return swept
