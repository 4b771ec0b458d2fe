"""
Pydantic schemas for booking requests and the booking projection.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from booking_core.domain.enums import (
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    TripType,
)
from booking_core.domain.payments import overall_payment_status
from booking_core.domain.transitions import OVERRIDE_NOTES_MAX_LENGTH
from booking_core.domain.vehicles import VehicleCategory
from booking_core.schemas.base import RequestModel, VersionedRequest


class PricingSnapshot(RequestModel):
    rate_per_km: Decimal = Field(..., ge=0, decimal_places=2)
    total_amount: Decimal = Field(..., gt=0, decimal_places=2)
    trip_type: TripType = TripType.ONE_WAY
    distance: Decimal = Field(..., gt=0)


class PaymentSplit(RequestModel):
    online: Decimal = Field(..., gt=0, decimal_places=2)
    cash: Decimal = Field(..., gt=0, decimal_places=2)


class BookingCreate(RequestModel):
    driver_id: str = Field(..., min_length=1, max_length=64)
    vehicle_category: VehicleCategory
    passengers: int = Field(default=1, ge=1)
    pricing: PricingSnapshot
    payment_method: PaymentMethod
    is_partial_payment: Optional[bool] = None
    split: Optional[PaymentSplit] = None


class StatusUpdate(VersionedRequest):
    target_status: BookingStatus
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=OVERRIDE_NOTES_MAX_LENGTH)
    override: bool = False
    refund_amount: Optional[Decimal] = Field(None, ge=0)


class PricingResponse(BaseModel):
    rate_per_km: Decimal
    total_amount: Decimal
    trip_type: str
    distance: Decimal


class PartialPaymentDetails(BaseModel):
    online_amount: Decimal
    cash_amount: Decimal
    online_payment_status: str
    cash_payment_status: str
    online_payment_id: Optional[str] = None
    cash_collected_at: Optional[datetime] = None
    cash_collected_by: Optional[str] = None
    cash_collected_by_model: Optional[str] = None


class PaymentStateResponse(BaseModel):
    method: str
    status: str
    is_partial_payment: bool
    transaction_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    partial_payment_details: Optional[PartialPaymentDetails] = None


class CancellationResponse(BaseModel):
    id: int
    cancelled_by: str
    cancelled_by_model: str
    cancelled_at: Optional[datetime]
    reason: str
    request_status: str
    requested_at: Optional[datetime]
    resolved_by: Optional[str]
    resolved_by_model: Optional[str]
    resolved_at: Optional[datetime]
    resolution_reason: Optional[str]
    refund_amount: Decimal
    refund_status: str
    refund_method: Optional[str]
    refund_reference: Optional[str]
    refund_initiated_at: Optional[datetime]
    refund_completed_at: Optional[datetime]
    refund_notes: Optional[str]

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    booking_number: str
    user_id: str
    driver_id: str
    vehicle_category: str
    passengers: int
    status: BookingStatus
    version: int
    pricing: PricingResponse
    payment: PaymentStateResponse
    cancellation: Optional[CancellationResponse] = None
    overall_payment_status: PaymentStatus
    has_outstanding_balance: bool
    replayed: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_booking(cls, booking, replayed: bool = False) -> "BookingResponse":
        details = None
        if booking.is_partial_payment:
            details = PartialPaymentDetails(
                online_amount=booking.online_amount,
                cash_amount=booking.cash_amount,
                online_payment_status=booking.online_payment_status,
                cash_payment_status=booking.cash_payment_status,
                online_payment_id=booking.online_payment_id,
                cash_collected_at=booking.cash_collected_at,
                cash_collected_by=booking.cash_collected_by,
                cash_collected_by_model=booking.cash_collected_by_model,
            )
        overall = overall_payment_status(booking)
        cancellation = booking.cancellation
        return cls(
            id=booking.id,
            booking_number=booking.booking_number,
            user_id=booking.user_id,
            driver_id=booking.driver_id,
            vehicle_category=booking.vehicle_category,
            passengers=booking.passengers,
            status=booking.status,
            version=booking.version,
            pricing=PricingResponse(
                rate_per_km=booking.rate_per_km,
                total_amount=booking.total_amount,
                trip_type=booking.trip_type,
                distance=booking.distance,
            ),
            payment=PaymentStateResponse(
                method=booking.payment_method,
                status=booking.payment_status,
                is_partial_payment=booking.is_partial_payment,
                transaction_id=booking.payment_transaction_id,
                completed_at=booking.payment_completed_at,
                partial_payment_details=details,
            ),
            cancellation=CancellationResponse.model_validate(cancellation) if cancellation else None,
            overall_payment_status=overall,
            has_outstanding_balance=(
                booking.status == BookingStatus.COMPLETED.value and overall != PaymentStatus.COMPLETED
            ),
            replayed=replayed,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    limit: int
    cached: bool = False


class HistoryEntryResponse(BaseModel):
    id: int
    status: str
    timestamp: datetime
    updated_by: str
    updated_by_model: str
    reason: Optional[str]
    notes: Optional[str]

    model_config = {"from_attributes": True}


class BookingHistoryResponse(BaseModel):
    booking_id: int
    entries: list[HistoryEntryResponse]
