"""Credit ledger rows and reservation records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    GRANT = "grant"
    DEBIT = "debit"
    REFUND = "refund"


class CreditTransaction(BaseModel):
    """Append-only ledger row. ``balance_after`` is the available balance after the operation."""

    transaction_id: str
    user_id: str
    type: TransactionType
    amount: int  # signed
    balance_after: int
    metadata: dict[str, Any] = {}
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class VideoJobStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoJob(BaseModel):
    """Credit hold for one generation; settled by charge or released by refund."""

    video_job_id: str
    user_id: str
    generation_id: str
    provider: str = ""
    estimated_units: float = 0.0  # rendered minutes
    estimated_credits: int = 0
    credits_reserved: int = 0
    credits_charged: int = 0
    actual_units: float | None = None
    status: VideoJobStatus = VideoJobStatus.PENDING
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None


class CreditCheck(BaseModel):
    has_enough: bool
    balance: int
    required: int
    shortfall: int


class CreditBalance(BaseModel):
    user_id: str
    balance: int  # settled credits
    reserved: int  # outstanding holds
    available: int
