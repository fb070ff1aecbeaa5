"""Credit balance, transaction history and cost estimates."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.deps import current_user
from bvg.billing import (
    CreditBalance,
    CreditCheck,
    CreditLedger,
    CreditTransaction,
    credits_to_usd,
    estimate_job_minutes,
    get_credit_ledger,
)
from bvg.config import get_settings

router = APIRouter()
settings = get_settings()


class EstimateRequest(BaseModel):
    number_of_scenes: int = Field(default=1, ge=1, le=10)
    videos: int = Field(default=1, ge=1)


class EstimateResponse(BaseModel):
    minutes: float
    check: CreditCheck
    usd: float


@router.get("/credits/balance", response_model=CreditBalance)
def get_balance(
    user_id: str = Depends(current_user),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return ledger.get_balance(user_id)


@router.get("/credits/transactions", response_model=list[CreditTransaction])
def list_transactions(
    limit: int = Query(50, ge=1, le=500),
    user_id: str = Depends(current_user),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    return ledger.list_transactions(user_id, limit=limit)


@router.post("/credits/estimate", response_model=EstimateResponse)
def estimate(
    request: EstimateRequest,
    user_id: str = Depends(current_user),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    """Would the caller's available credits cover ``videos`` jobs of ``number_of_scenes`` scenes?"""
    minutes = estimate_job_minutes(
        request.number_of_scenes,
        settings.initial_segment_seconds,
        settings.extension_segment_seconds,
    ) * request.videos
    check = ledger.check_credits(user_id, minutes)
    return EstimateResponse(minutes=minutes, check=check, usd=credits_to_usd(check.required))
