"""
Cancellation workflow layered on the state machine.

    (none) -> requested -> approved -> booking cancelled
                        -> rejected -> booking restored to its prior status

The prior status on rejection is read from the audit trail, never assumed.
A rejected record stays attached to the booking; a later request opens a new
record. Direct driver/admin cancellations skip the request step and create a
record marked `direct`.

Refund amounts are an explicit input. When omitted they default to the sum of
settled payment legs, and they can never exceed that sum.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import (
    AmountMismatchError,
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
)
from booking_core.core.logging import get_logger
from booking_core.db.base import utcnow
from booking_core.db.session import retry_on_store_errors
from booking_core.domain.actors import Actor
from booking_core.domain.enums import (
    ActorModel,
    BookingStatus,
    CancellationRequestStatus,
    RefundStatus,
)
from booking_core.domain.payments import settled_amount, to_money
from booking_core.models.booking import Booking
from booking_core.models.cancellation import Cancellation
from booking_core.services import audit_trail
from booking_core.services.booking_store import ensure_participant, ensure_version, get_booking
from booking_core.services.state_machine import apply_transition

logger = get_logger(__name__)

REQUESTABLE_FROM = frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED})


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise ForbiddenError("Only admins may resolve cancellation requests")


def _pending_request(booking: Booking) -> Cancellation:
    if booking.status != BookingStatus.CANCELLATION_REQUESTED.value:
        raise InvalidTransitionError(
            "This booking is not requesting cancellation",
            details={"booking_id": booking.id, "status": booking.status},
        )
    record = booking.cancellation
    if record is None or record.request_status != CancellationRequestStatus.PENDING.value:
        raise InvalidStateError(
            "Cancellation request has already been processed",
            details={"booking_id": booking.id},
        )
    return record


def resolve_refund_amount(booking: Booking, requested: Optional[Decimal]) -> Decimal:
    settled = settled_amount(booking)
    if requested is None:
        return settled
    amount = to_money(requested)
    if amount < 0 or amount > settled:
        raise AmountMismatchError(
            "Refund amount must be between zero and the settled amount",
            details={"requested": str(amount), "settled": str(settled)},
        )
    return amount


async def request_cancellation_locked(
    db: AsyncSession,
    booking: Booking,
    actor: Actor,
    expected_version: int,
    reason: Optional[str],
    notes: Optional[str] = None,
) -> Booking:
    """Open a cancellation request. Caller has loaded the booking and checked its version."""
    if actor.model == ActorModel.DRIVER:
        raise ForbiddenError("Drivers cancel trips directly instead of requesting cancellation")
    ensure_participant(booking, actor)

    current = BookingStatus(booking.status)
    if current not in REQUESTABLE_FROM:
        raise InvalidTransitionError(
            f"Cannot request cancellation from {current.value}",
            details={"booking_id": booking.id, "status": current.value},
        )
    if not reason or not reason.strip():
        raise InvalidTransitionError("A reason is required to request cancellation", code="reason_required")

    booking = await apply_transition(
        db, booking, BookingStatus.CANCELLATION_REQUESTED, actor, expected_version,
        reason=reason, notes=notes,
    )
    now = utcnow()
    db.add(Cancellation(
        booking_id=booking.id,
        cancelled_by=actor.id,
        cancelled_by_model=actor.model.value,
        reason=reason.strip(),
        request_status=CancellationRequestStatus.PENDING.value,
        requested_at=now,
        refund_amount=Decimal("0.00"),
        refund_status=RefundStatus.PENDING.value,
    ))
    await db.flush()

    logger.info(
        "cancellation_requested",
        booking_id=booking.id,
        actor_id=actor.id,
        actor_model=actor.model.value,
        previous_status=current.value,
    )
    return await get_booking(db, booking.id)


async def approve_cancellation_locked(
    db: AsyncSession,
    booking: Booking,
    admin: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    refund_amount: Optional[Decimal] = None,
) -> Booking:
    _require_admin(admin)
    record = _pending_request(booking)
    amount = resolve_refund_amount(booking, refund_amount)
    reason = reason or "Cancellation approved by admin"

    booking = await apply_transition(
        db, booking, BookingStatus.CANCELLED, admin, expected_version, reason=reason, notes=notes,
    )
    now = utcnow()
    record.request_status = CancellationRequestStatus.APPROVED.value
    record.resolved_by = admin.id
    record.resolved_by_model = admin.model.value
    record.resolved_at = now
    record.resolution_reason = reason
    record.cancelled_at = now
    record.refund_amount = amount
    record.refund_status = RefundStatus.PENDING.value
    await db.flush()

    logger.info(
        "cancellation_approved",
        booking_id=booking.id,
        admin_id=admin.id,
        refund_amount=str(amount),
    )
    return await get_booking(db, booking.id)


async def reject_cancellation_locked(
    db: AsyncSession,
    booking: Booking,
    admin: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Booking:
    _require_admin(admin)
    record = _pending_request(booking)

    prior = await audit_trail.status_before_cancellation_request(db, booking.id)
    if prior is None:
        raise InvalidStateError(
            "Status history has no record of the status before the cancellation request",
            details={"booking_id": booking.id},
        )
    reason = reason or "Cancellation request rejected by admin"

    booking = await apply_transition(db, booking, prior, admin, expected_version, reason=reason, notes=notes)
    record.request_status = CancellationRequestStatus.REJECTED.value
    record.resolved_by = admin.id
    record.resolved_by_model = admin.model.value
    record.resolved_at = utcnow()
    record.resolution_reason = reason
    await db.flush()

    logger.info("cancellation_rejected", booking_id=booking.id, admin_id=admin.id, restored_status=prior.value)
    return await get_booking(db, booking.id)


async def cancel_directly_locked(
    db: AsyncSession,
    booking: Booking,
    actor: Actor,
    expected_version: int,
    reason: str,
    notes: Optional[str] = None,
    refund_amount: Optional[Decimal] = None,
) -> Booking:
    """Driver/admin cancellation without a request step."""
    amount = resolve_refund_amount(booking, refund_amount)

    booking = await apply_transition(
        db, booking, BookingStatus.CANCELLED, actor, expected_version, reason=reason, notes=notes,
    )
    now = utcnow()
    db.add(Cancellation(
        booking_id=booking.id,
        cancelled_by=actor.id,
        cancelled_by_model=actor.model.value,
        cancelled_at=now,
        reason=reason,
        request_status=CancellationRequestStatus.DIRECT.value,
        requested_at=now,
        refund_amount=amount,
        refund_status=RefundStatus.PENDING.value,
    ))
    await db.flush()

    logger.info(
        "booking_cancelled_directly",
        booking_id=booking.id,
        actor_id=actor.id,
        actor_model=actor.model.value,
        refund_amount=str(amount),
    )
    return await get_booking(db, booking.id)


@retry_on_store_errors
async def request_cancellation(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    expected_version: int,
    reason: str,
    notes: Optional[str] = None,
) -> Booking:
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    return await request_cancellation_locked(db, booking, actor, expected_version, reason, notes)


@retry_on_store_errors
async def approve_cancellation(
    db: AsyncSession,
    booking_id: int,
    admin: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    refund_amount: Optional[Decimal] = None,
) -> Booking:
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    return await approve_cancellation_locked(
        db, booking, admin, expected_version, reason, notes, refund_amount
    )


@retry_on_store_errors
async def reject_cancellation(
    db: AsyncSession,
    booking_id: int,
    admin: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Booking:
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    return await reject_cancellation_locked(db, booking, admin, expected_version, reason, notes)
