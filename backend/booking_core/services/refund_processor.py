"""
Refund processor for cancelled bookings.

    gateway: pending -> initiated -> completed
    manual:  pending -> completed

The gateway is called before anything is written. If it fails, the session is
untouched and the refund stays pending, so the caller can simply retry. The
idempotency key sent to the gateway is derived from the cancellation record,
which makes a retry after a lost response land on the same provider refund.
"""

import time
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import (
    AmountMismatchError,
    ForbiddenError,
    GatewayUnavailableError,
    InvalidStateError,
)
from booking_core.core.logging import get_logger
from booking_core.core.metrics import record_refund_operation
from booking_core.db.base import utcnow
from booking_core.db.session import retry_on_store_errors
from booking_core.domain.actors import Actor
from booking_core.domain.enums import (
    BookingStatus,
    LedgerEntryKind,
    PaymentStatus,
    REFUNDABLE_REQUESTS,
    RefundMethod,
    RefundStatus,
)
from booking_core.domain.payments import gateway_leg, payment_legs, to_money
from booking_core.models.booking import Booking
from booking_core.models.cancellation import Cancellation
from booking_core.models.ledger import PaymentLedgerEntry
from booking_core.services.booking_store import compare_and_swap, ensure_version, get_booking
from booking_core.services.interfaces.gateway import ReconciliationGateway

logger = get_logger(__name__)

DEFAULT_REFUND_REASON = "Booking cancellation refund"


def _refund_record(booking: Booking) -> Cancellation:
    record = booking.cancellation
    if (
        booking.status != BookingStatus.CANCELLED.value
        or record is None
        or record.request_status not in REFUNDABLE_REQUESTS
    ):
        raise InvalidStateError(
            "Refunds apply only to cancelled bookings",
            details={"booking_id": booking.id, "status": booking.status},
        )
    return record


def _advance(record: Cancellation, target: RefundStatus) -> None:
    current = RefundStatus(record.refund_status)
    if target.rank <= current.rank:
        raise InvalidStateError(
            f"Refund cannot move from {current.value} to {target.value}",
            details={"cancellation_id": record.id},
        )
    record.refund_status = target.value


def _payment_reference(booking: Booking) -> Optional[str]:
    if booking.is_partial_payment:
        return booking.online_payment_id
    return booking.payment_transaction_id


def _captured_online(booking: Booking) -> Decimal:
    """What the provider actually holds: the gateway leg, once it has completed."""
    leg = gateway_leg(booking)
    for state in payment_legs(booking):
        if state.leg == leg and state.status == PaymentStatus.COMPLETED.value:
            return state.amount
    return Decimal("0.00")


@retry_on_store_errors
async def initiate_refund(
    db: AsyncSession,
    gateway: ReconciliationGateway,
    booking_id: int,
    actor: Actor,
    expected_version: int,
    method: RefundMethod,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Booking:
    """
    Start the refund for a cancelled booking.

    Raises:
        InvalidStateError: refund not pending, nothing to refund, or no captured payment to refund
        AmountMismatchError: a gateway refund larger than the captured online leg
        GatewayUnavailableError: provider failed; refund stays pending
        ConflictError: `expected_version` is stale
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins may manage refunds")
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    record = _refund_record(booking)
    if record.refund_status != RefundStatus.PENDING.value:
        raise InvalidStateError(
            f"Refund is already {record.refund_status}",
            details={"booking_id": booking_id},
        )
    amount = to_money(record.refund_amount)
    if amount <= 0:
        raise InvalidStateError("There is no amount to refund", details={"booking_id": booking_id})

    reference: Optional[str] = None
    if method == RefundMethod.GATEWAY:
        payment_reference = _payment_reference(booking)
        if not payment_reference:
            raise InvalidStateError(
                "Booking has no captured online payment to refund through the gateway",
                details={"booking_id": booking_id},
            )
        captured = _captured_online(booking)
        if amount > captured:
            record_refund_operation("initiate", "rejected")
            raise AmountMismatchError(
                "Refund exceeds the amount captured online; use a manual refund instead",
                code="refund_exceeds_capture",
                details={"booking_id": booking_id, "refund_amount": str(amount), "captured": str(captured)},
            )
        try:
            refund = await gateway.create_refund(
                payment_reference,
                amount,
                reason or DEFAULT_REFUND_REASON,
                idempotency_key=f"refund-{booking.id}-{record.id}",
            )
        except GatewayUnavailableError as exc:
            record_refund_operation("initiate", "gateway_error")
            logger.warning(
                "refund_gateway_failed",
                booking_id=booking_id,
                amount=str(amount),
                error=exc.message,
            )
            raise
        reference = refund.reference

    booking = await compare_and_swap(db, booking, expected_version)
    now = utcnow()
    record.refund_method = method.value
    record.refund_initiated_at = now
    record.refund_notes = notes
    if method == RefundMethod.GATEWAY:
        _advance(record, RefundStatus.INITIATED)
        record.refund_reference = reference
        kind = LedgerEntryKind.REFUND_INITIATED
    else:
        _advance(record, RefundStatus.COMPLETED)
        record.refund_reference = f"MANUAL_{int(time.time() * 1000)}"
        record.refund_completed_at = now
        kind = LedgerEntryKind.REFUND_COMPLETED
    db.add(PaymentLedgerEntry(
        booking_id=booking_id,
        kind=kind.value,
        amount=amount,
        reference=record.refund_reference,
        recorded_by=actor.id,
        recorded_by_model=actor.model.value,
    ))
    await db.flush()

    record_refund_operation("initiate", "success")
    logger.info(
        "refund_initiated",
        booking_id=booking_id,
        method=method.value,
        amount=str(amount),
        reference=record.refund_reference,
        refund_status=record.refund_status,
    )
    return await get_booking(db, booking_id)


@retry_on_store_errors
async def complete_refund(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    expected_version: int,
    notes: Optional[str] = None,
) -> Booking:
    """Mark a gateway refund as completed. Legal only from `initiated`."""
    if not actor.is_admin:
        raise ForbiddenError("Only admins may manage refunds")
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    record = _refund_record(booking)
    if record.refund_status != RefundStatus.INITIATED.value:
        record_refund_operation("complete", "rejected")
        raise InvalidStateError(
            f"Refund is {record.refund_status}; only an initiated refund can be completed",
            details={"booking_id": booking_id},
        )

    booking = await compare_and_swap(db, booking, expected_version)
    _advance(record, RefundStatus.COMPLETED)
    record.refund_completed_at = utcnow()
    if notes:
        record.refund_notes = notes
    db.add(PaymentLedgerEntry(
        booking_id=booking_id,
        kind=LedgerEntryKind.REFUND_COMPLETED.value,
        amount=to_money(record.refund_amount),
        reference=record.refund_reference,
        recorded_by=actor.id,
        recorded_by_model=actor.model.value,
    ))
    await db.flush()

    record_refund_operation("complete", "success")
    logger.info("refund_completed", booking_id=booking_id, reference=record.refund_reference)
    return await get_booking(db, booking_id)
