"""
Pydantic schemas for the cancellation workflow and refund processor.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from booking_core.domain.enums import RefundMethod
from booking_core.schemas.base import VersionedRequest


class CancellationRequest(VersionedRequest):
    reason: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class CancellationApprove(VersionedRequest):
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)
    refund_amount: Optional[Decimal] = Field(None, ge=0, decimal_places=2)


class CancellationReject(VersionedRequest):
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class RefundInitiateRequest(VersionedRequest):
    method: RefundMethod
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)


class RefundCompleteRequest(VersionedRequest):
    notes: Optional[str] = Field(None, max_length=1000)
