"""
Pydantic schemas for payment ledger requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from booking_core.domain.enums import ActorModel, PaymentMethod
from booking_core.schemas.base import VersionedRequest
from booking_core.schemas.booking import PaymentSplit


class PaymentIntentRequest(VersionedRequest):
    method: PaymentMethod
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    is_partial_payment: bool = False
    split: Optional[PaymentSplit] = None


class CashCollectedRequest(VersionedRequest):
    collected_by: str = Field(..., min_length=1, max_length=64)
    collected_by_model: ActorModel


class LedgerEntryResponse(BaseModel):
    id: int
    kind: str
    leg: Optional[str]
    amount: Decimal
    outcome: Optional[str]
    applied: bool
    idempotency_key: Optional[str]
    transaction_id: Optional[str]
    reference: Optional[str]
    recorded_by: Optional[str]
    recorded_by_model: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerResponse(BaseModel):
    booking_id: int
    entries: list[LedgerEntryResponse]
    balance: Decimal
    settled_amount: Decimal
