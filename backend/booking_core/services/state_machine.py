"""
Booking state machine: the single authority for status transitions.

`request_transition` validates an actor's request against the transition table
(domain/transitions.py), the actor's role and the caller's version, then either
applies the edge itself or hands it to the cancellation workflow when the edge
involves a cancellation record. `apply_transition` is the primitive every
workflow uses: CAS the booking, append one audit entry.

Entering `completed` never touches payment state. A completed trip with an
unsettled balance is reported through the projection's outstanding-balance
flag, not corrected here.
"""

import time
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import ForbiddenError, InvalidTransitionError
from booking_core.core.logging import get_logger
from booking_core.core.metrics import record_transition, transition_latency
from booking_core.db.session import retry_on_store_errors
from booking_core.domain.actors import Actor
from booking_core.domain.enums import BookingStatus
from booking_core.domain.transitions import (
    OVERRIDE_NOTES_MAX_LENGTH,
    is_allowed,
    is_overridable,
    override_notes,
    role_may,
)
from booking_core.models.booking import Booking
from booking_core.services import audit_trail
from booking_core.services.booking_store import (
    compare_and_swap,
    ensure_participant,
    ensure_version,
    get_booking,
)

logger = get_logger(__name__)


def _require_reason(reason: Optional[str], what: str) -> str:
    if not reason or not reason.strip():
        raise InvalidTransitionError(
            f"A reason is required for {what}", code="reason_required"
        )
    return reason.strip()


async def apply_transition(
    db: AsyncSession,
    booking: Booking,
    target: BookingStatus,
    actor: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    **extra_values: Any,
) -> Booking:
    """CAS the status change and append exactly one audit entry."""
    previous = booking.status
    started = time.perf_counter()

    booking = await compare_and_swap(
        db, booking, expected_version, status=target.value, **extra_values
    )
    audit_trail.append_entry(db, booking.id, target, actor, reason=reason, notes=notes)
    await db.flush()

    transition_latency.observe(time.perf_counter() - started)
    record_transition("success")
    logger.info(
        "booking_transitioned",
        booking_id=booking.id,
        booking_number=booking.booking_number,
        from_status=previous,
        to_status=target.value,
        actor_id=actor.id,
        actor_model=actor.model.value,
        version=booking.version,
    )
    return booking


def _reject(current: BookingStatus, target: BookingStatus, booking_id: int) -> InvalidTransitionError:
    record_transition("invalid")
    logger.warning(
        "transition_rejected",
        booking_id=booking_id,
        from_status=current.value,
        to_status=target.value,
    )
    return InvalidTransitionError(
        f"Cannot change status from {current.value} to {target.value}",
        details={"booking_id": booking_id, "from": current.value, "to": target.value},
    )


async def _request_transition(
    db: AsyncSession,
    booking_id: int,
    target: BookingStatus,
    actor: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    override: bool = False,
    refund_amount=None,
) -> Booking:
    # Imported here: the workflow builds on apply_transition from this module
    from booking_core.services import cancellation_workflow

    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    current = BookingStatus(booking.status)

    if not is_allowed(current, target):
        if not override:
            raise _reject(current, target, booking.id)
        if not actor.is_admin:
            record_transition("forbidden")
            raise ForbiddenError("Only admins may override the transition table")
        if not is_overridable(current, target):
            raise _reject(current, target, booking.id)
        reason = _require_reason(reason, "an admin override")
        if notes and len(notes) > OVERRIDE_NOTES_MAX_LENGTH:
            raise InvalidTransitionError(
                f"Override notes are limited to {OVERRIDE_NOTES_MAX_LENGTH} characters",
                code="notes_too_long",
            )
        notes = override_notes(notes)
        logger.warning(
            "transition_override",
            booking_id=booking.id,
            from_status=current.value,
            to_status=target.value,
            admin_id=actor.id,
            reason=reason,
        )
    else:
        ensure_participant(booking, actor)
        if not role_may(actor.model, current, target):
            record_transition("forbidden")
            raise ForbiddenError(
                f"{actor.model.value} may not change status from {current.value} to {target.value}",
                details={"booking_id": booking.id},
            )

    if target == BookingStatus.CANCELLATION_REQUESTED:
        return await cancellation_workflow.request_cancellation_locked(
            db, booking, actor, expected_version, reason, notes
        )
    if target == BookingStatus.CANCELLED:
        reason = _require_reason(reason, "a cancellation")
        if current == BookingStatus.CANCELLATION_REQUESTED:
            return await cancellation_workflow.approve_cancellation_locked(
                db, booking, actor, expected_version, reason, notes, refund_amount
            )
        return await cancellation_workflow.cancel_directly_locked(
            db, booking, actor, expected_version, reason, notes, refund_amount
        )

    await apply_transition(db, booking, target, actor, expected_version, reason=reason, notes=notes)
    return await get_booking(db, booking_id)


@retry_on_store_errors
async def request_transition(
    db: AsyncSession,
    booking_id: int,
    target: BookingStatus,
    actor: Actor,
    expected_version: int,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    override: bool = False,
    refund_amount=None,
) -> Booking:
    """
    Move a booking to `target` on behalf of `actor`.

    Raises:
        ConflictError: `expected_version` is stale
        InvalidTransitionError: edge not in the table (and no valid admin override)
        ForbiddenError: the actor's role or ownership does not permit the edge
    """
    return await _request_transition(
        db, booking_id, target, actor, expected_version,
        reason=reason, notes=notes, override=override, refund_amount=refund_amount,
    )
