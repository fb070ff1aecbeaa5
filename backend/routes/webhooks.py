"""Payment webhook: credits purchased or granted upstream, applied once per event id."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from bvg.billing import CreditLedger, TransactionType, get_credit_ledger
from bvg.config import get_settings

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


class PaymentEvent(BaseModel):
    event_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    credits: int = Field(..., gt=0)
    type: Literal["purchase", "grant"] = "purchase"


class PaymentResult(BaseModel):
    event_id: str
    applied: bool
    balance: int


def signature_for(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@router.post("/webhooks/payment", response_model=PaymentResult)
async def payment_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None),
    ledger: CreditLedger = Depends(get_credit_ledger),
):
    body = await request.body()
    if settings.payment_webhook_secret:
        expected = signature_for(body, settings.payment_webhook_secret)
        if not x_signature or not hmac.compare_digest(expected, x_signature):
            logger.warning("Rejected payment webhook with bad signature")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = PaymentEvent.model_validate_json(body)
    except PydanticValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid payment event: {e.errors()[0]['msg']}")

    return await asyncio.to_thread(apply_payment, ledger, event)


def apply_payment(ledger: CreditLedger, event: PaymentEvent) -> PaymentResult:
    tx = ledger.grant(
        event.user_id,
        event.credits,
        idempotency_key=event.event_id,
        type=TransactionType(event.type),
        metadata={"source": "payment_webhook"},
    )
    balance = ledger.get_balance(event.user_id)
    return PaymentResult(event_id=event.event_id, applied=tx is not None, balance=balance.available)
