"""Credit ledger: reserve, charge, refund and grant.

A reservation is a hold. It leaves the settled balance alone but counts
against the *available* balance (settled minus outstanding holds) that
new reservations are checked against. Charging converts the hold into a
debit; refunding releases it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from bvg.billing.models import (
    CreditBalance,
    CreditCheck,
    CreditTransaction,
    TransactionType,
    VideoJob,
    VideoJobStatus,
)
from bvg.billing.pricing import CREDITS_PER_MINUTE, credits_for_minutes
from bvg.billing.store import CreditStore, get_credit_store
from bvg.errors import InsufficientCreditsError, JobNotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _new_transaction_id() -> str:
    return f"tx_{uuid.uuid4().hex[:16]}"


def _new_video_job_id() -> str:
    return f"vj_{uuid.uuid4().hex[:16]}"


class CreditLedger:
    def __init__(self, store: CreditStore, credits_per_minute: float = CREDITS_PER_MINUTE):
        self._store = store
        self._rate = credits_per_minute

    def required_credits(self, estimated_units: float) -> int:
        """Credits for ``estimated_units`` rendered minutes."""
        return credits_for_minutes(estimated_units, self._rate)

    # -- reads ---------------------------------------------------------------

    def get_balance(self, user_id: str) -> CreditBalance:
        balance, reserved = self._store.get_balance(user_id)
        return CreditBalance(
            user_id=user_id, balance=balance, reserved=reserved, available=balance - reserved
        )

    def check_credits(self, user_id: str, estimated_units: float) -> CreditCheck:
        available = self.get_balance(user_id).available
        required = self.required_credits(estimated_units)
        return CreditCheck(
            has_enough=available >= required,
            balance=available,
            required=required,
            shortfall=max(required - available, 0),
        )

    def pending_reservation(self, generation_id: str) -> VideoJob | None:
        return self._store.find_pending_video_job(generation_id)

    def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransaction]:
        return self._store.list_transactions(user_id, limit=limit)

    # -- mutations -----------------------------------------------------------

    def reserve(
        self,
        user_id: str,
        generation_id: str,
        provider: str,
        estimated_units: float,
        metadata: dict[str, Any] | None = None,
    ) -> VideoJob:
        """Hold credits for one generation. Raises InsufficientCreditsError; nothing is held then."""
        required = self.required_credits(estimated_units)
        with self._store.locked(user_id) as session:
            if session.available < required:
                raise InsufficientCreditsError(balance=session.available, required=required)
            video_job = VideoJob(
                video_job_id=_new_video_job_id(),
                user_id=user_id,
                generation_id=generation_id,
                provider=provider,
                estimated_units=estimated_units,
                estimated_credits=required,
                credits_reserved=required,
                metadata=metadata or {},
            )
            session.reserved += required
            session.save_video_job(video_job)
        logger.info(
            "Reserved %d credits for %s (user=%s, video_job=%s)",
            required, generation_id, user_id, video_job.video_job_id,
        )
        return video_job

    def charge(self, video_job_id: str, actual_units: float | None = None) -> VideoJob:
        """Settle a reservation. Without reported usage the original estimate is charged."""
        video_job = self._require_video_job(video_job_id)
        with self._store.locked(video_job.user_id) as session:
            video_job = session.get_video_job(video_job_id)
            if video_job.status != VideoJobStatus.PENDING:
                logger.info("Video job %s already %s; charge skipped", video_job_id, video_job.status.value)
                return video_job

            if actual_units is not None:
                actual = self.required_credits(actual_units)
            else:
                actual = video_job.estimated_credits
            hold = video_job.credits_reserved
            # this job's own hold is part of what it may spend
            spendable = session.available + hold
            if spendable < actual:
                raise InsufficientCreditsError(balance=spendable, required=actual)

            session.balance -= actual
            session.reserved = max(session.reserved - hold, 0)
            session.record(
                CreditTransaction(
                    transaction_id=_new_transaction_id(),
                    user_id=video_job.user_id,
                    type=TransactionType.DEBIT,
                    amount=-actual,
                    balance_after=session.available,
                    metadata={
                        "video_job_id": video_job_id,
                        "generation_id": video_job.generation_id,
                        "estimated_credits": video_job.estimated_credits,
                        "actual_units": actual_units,
                    },
                    idempotency_key=f"debit:{video_job_id}",
                )
            )
            video_job = video_job.model_copy(
                update={
                    "status": VideoJobStatus.COMPLETED,
                    "credits_charged": actual,
                    "credits_reserved": 0,
                    "actual_units": actual_units,
                    "completed_at": datetime.utcnow(),
                }
            )
            session.save_video_job(video_job)
        logger.info("Charged %d credits for %s (video_job=%s)", actual, video_job.generation_id, video_job_id)
        return video_job

    def refund(self, video_job_id: str, reason: str = "") -> VideoJob:
        """Release a reservation. No-op when nothing is held."""
        video_job = self._require_video_job(video_job_id)
        if video_job.credits_reserved == 0:
            return video_job
        with self._store.locked(video_job.user_id) as session:
            video_job = session.get_video_job(video_job_id)
            hold = video_job.credits_reserved
            if hold == 0:
                return video_job
            session.reserved = max(session.reserved - hold, 0)
            session.record(
                CreditTransaction(
                    transaction_id=_new_transaction_id(),
                    user_id=video_job.user_id,
                    type=TransactionType.REFUND,
                    amount=hold,
                    balance_after=session.available,
                    metadata={
                        "video_job_id": video_job_id,
                        "generation_id": video_job.generation_id,
                        "reason": reason,
                    },
                    idempotency_key=f"refund:{video_job_id}",
                )
            )
            video_job = video_job.model_copy(
                update={
                    "status": VideoJobStatus.FAILED,
                    "credits_reserved": 0,
                    "completed_at": datetime.utcnow(),
                }
            )
            session.save_video_job(video_job)
        logger.info("Refunded %d credits for %s (%s)", hold, video_job.generation_id, reason or "no reason")
        return video_job

    def grant(
        self,
        user_id: str,
        credits: int,
        idempotency_key: str,
        type: TransactionType = TransactionType.GRANT,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction | None:
        """Add credits once per idempotency key. Returns None for a redelivered key."""
        if credits <= 0:
            raise ValidationError(f"Grant must be positive, got {credits}")
        if not idempotency_key:
            raise ValidationError("Grant requires an idempotency key")
        if self._store.find_transaction(idempotency_key):
            logger.info("Grant %s already applied; skipping", idempotency_key)
            return None
        with self._store.locked(user_id) as session:
            if session.find_transaction(idempotency_key):
                logger.info("Grant %s already applied; skipping", idempotency_key)
                return None
            session.balance += credits
            tx = CreditTransaction(
                transaction_id=_new_transaction_id(),
                user_id=user_id,
                type=type,
                amount=credits,
                balance_after=session.available,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
            session.record(tx)
        logger.info("Granted %d credits to %s (key=%s)", credits, user_id, idempotency_key)
        return tx

    def _require_video_job(self, video_job_id: str) -> VideoJob:
        video_job = self._store.get_video_job(video_job_id)
        if video_job is None:
            raise JobNotFoundError(f"Reservation not found: {video_job_id}")
        return video_job


_ledger: CreditLedger | None = None


def get_credit_ledger() -> CreditLedger:
    global _ledger
    if _ledger is None:
        from bvg.config import get_settings

        _ledger = CreditLedger(get_credit_store(), get_settings().credits_per_minute)
    return _ledger
