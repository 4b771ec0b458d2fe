"""
Payment ledger endpoints for riders, drivers and admins.
Gateway confirmations arrive through the webhook route instead.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.api.deps import mutation_response
from booking_core.core.security import get_current_actor
from booking_core.db.session import get_db
from booking_core.domain.actors import Actor
from booking_core.schemas.booking import BookingResponse
from booking_core.schemas.payment import CashCollectedRequest, PaymentIntentRequest
from booking_core.services.payment_ledger import (
    Split,
    mark_cash_collected,
    record_payment_intent,
    settle_cash_payment,
)

router = APIRouter(prefix="/bookings", tags=["Payments"])


@router.post("/{booking_id}/payment/intent", response_model=BookingResponse)
async def payment_intent_endpoint(
    booking_id: int,
    data: PaymentIntentRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Set the payment plan. Allowed only while nothing has been paid."""
    split = Split(online=data.split.online, cash=data.split.cash) if data.split else None
    booking = await record_payment_intent(
        db, booking_id, actor, data.version,
        method=data.method,
        amount=data.amount,
        is_partial=data.is_partial_payment,
        split=split,
    )
    return await mutation_response(db, booking)


@router.post("/{booking_id}/payment/cash-collected", response_model=BookingResponse)
async def cash_collected_endpoint(
    booking_id: int,
    data: CashCollectedRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    """
    Driver (or admin) confirms the cash leg of a split payment.
    Send an Idempotency-Key header to make retries safe.
    """
    booking, replayed = await mark_cash_collected(
        db, booking_id, actor,
        collected_by=data.collected_by,
        collected_by_model=data.collected_by_model,
        expected_version=data.version,
        idempotency_key=idempotency_key,
    )
    return await mutation_response(db, booking, replayed=replayed)


@router.post("/{booking_id}/payment/cash-settled", response_model=BookingResponse)
async def cash_settled_endpoint(
    booking_id: int,
    data: CashCollectedRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Driver (or admin) confirms payment of a full cash booking."""
    booking = await settle_cash_payment(
        db, booking_id, actor,
        collected_by=data.collected_by,
        collected_by_model=data.collected_by_model,
        expected_version=data.version,
    )
    return await mutation_response(db, booking)
