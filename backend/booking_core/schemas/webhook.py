"""
Gateway webhook payload. Field names follow the gateway's camelCase.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from booking_core.domain.enums import GatewayOutcome, PaymentStatus
from booking_core.schemas.base import RequestModel


class PaymentWebhook(RequestModel):
    idempotency_key: str = Field(..., min_length=1, max_length=255)
    transaction_id: str = Field(..., min_length=1, max_length=100)
    booking_id: int
    outcome: GatewayOutcome
    amount: Optional[Decimal] = Field(None, gt=0)


class WebhookAck(BaseModel):
    booking_id: int
    version: int
    payment_status: str
    overall_payment_status: PaymentStatus
    replayed: bool
