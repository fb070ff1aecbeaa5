"""Credit billing: pricing, ledger and storage."""

from bvg.billing.ledger import CreditLedger, get_credit_ledger
from bvg.billing.models import (
    CreditBalance,
    CreditCheck,
    CreditTransaction,
    TransactionType,
    VideoJob,
    VideoJobStatus,
)
from bvg.billing.pricing import (
    CREDITS_PER_MINUTE,
    PRICE_PER_CREDIT,
    credits_for_minutes,
    credits_to_usd,
    estimate_job_minutes,
)
from bvg.billing.store import CreditStore, FileCreditStore, get_credit_store

__all__ = [
    "CREDITS_PER_MINUTE",
    "PRICE_PER_CREDIT",
    "CreditBalance",
    "CreditCheck",
    "CreditLedger",
    "CreditStore",
    "CreditTransaction",
    "FileCreditStore",
    "TransactionType",
    "VideoJob",
    "VideoJobStatus",
    "credits_for_minutes",
    "credits_to_usd",
    "estimate_job_minutes",
    "get_credit_ledger",
    "get_credit_store",
]
