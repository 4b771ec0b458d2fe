"""
Payment gateway webhook.

The signature covers the raw body, so the body is read as bytes, verified,
and only then parsed.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.api.deps import commit_and_invalidate
from booking_core.core.logging import get_logger
from booking_core.db.session import get_db
from booking_core.domain.payments import overall_payment_status
from booking_core.schemas.webhook import PaymentWebhook, WebhookAck
from booking_core.services.gateway_factory import get_gateway
from booking_core.services.interfaces.gateway import ReconciliationGateway
from booking_core.services.payment_ledger import apply_gateway_confirmation

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/payment", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: ReconciliationGateway = Depends(get_gateway),
    signature: Optional[str] = Header(None, alias="X-Gateway-Signature"),
):
    """
    Apply a gateway payment confirmation. Duplicate deliveries of the same
    idempotencyKey return the current state with replayed=true.
    """
    body = await request.body()
    if not gateway.verify_webhook_signature(body, signature):
        logger.warning("webhook_signature_invalid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = PaymentWebhook.model_validate_json(body)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())

    booking, replayed = await apply_gateway_confirmation(
        db,
        payload.booking_id,
        payload.transaction_id,
        payload.outcome,
        payload.idempotency_key,
        amount=payload.amount,
    )
    if not replayed:
        await commit_and_invalidate(db)
    return WebhookAck(
        booking_id=booking.id,
        version=booking.version,
        payment_status=booking.payment_status,
        overall_payment_status=overall_payment_status(booking),
        replayed=replayed,
    )
