"""
Booking record store with optimistic concurrency.

CONCURRENCY STRATEGY: Compare-and-swap on `version`
====================================================

Problem:
  A rider, a driver, an admin and the payment gateway can all act on the same
  booking at once. Two writers that read version N must not both succeed.

Solution:
  Every mutation is a single conditional UPDATE:

    UPDATE bookings SET ..., version = version + 1
    WHERE id = :id AND version = :expected_version

  rows_affected == 0 means someone else committed first. The transaction is
  rolled back and the caller gets ConflictError; callers re-read and retry.

  The booking row is the only shared mutable record. Child rows (cancellation,
  status history, ledger) are written in the same transaction *after* the CAS
  succeeds, so a losing writer never leaves partial state behind.

Locks are never held across bookings; contention is bounded to one row.
"""

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from booking_core.core.logging import get_logger
from booking_core.core.metrics import record_transition
from booking_core.domain.actors import Actor
from booking_core.domain.enums import ActorModel
from booking_core.models.booking import Booking

logger = get_logger(__name__)


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    """Load a booking with fresh state, replacing anything stale in the session."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found", details={"booking_id": booking_id})
    return booking


def ensure_version(booking: Booking, expected_version: int) -> None:
    """Fail fast when the caller's snapshot is already stale."""
    if booking.version != expected_version:
        record_transition("conflict")
        logger.info(
            "stale_version_rejected",
            booking_id=booking.id,
            expected=expected_version,
            current=booking.version,
        )
        raise ConflictError(
            "Booking was modified by another request. Re-fetch and retry.",
            details={"booking_id": booking.id, "expected_version": expected_version,
                     "current_version": booking.version},
        )


def ensure_participant(booking: Booking, actor: Actor) -> None:
    """Admins see everything; riders and drivers only their own bookings."""
    if actor.model == ActorModel.ADMIN:
        return
    if actor.model == ActorModel.USER and booking.user_id == actor.id:
        return
    if actor.model == ActorModel.DRIVER and booking.driver_id == actor.id:
        return
    raise ForbiddenError(
        "Not authorized to act on this booking",
        details={"booking_id": booking.id, "actor_model": actor.model.value},
    )


async def compare_and_swap(
    db: AsyncSession,
    booking: Booking,
    expected_version: int,
    **values: Any,
) -> Booking:
    """
    Apply `values` to the booking row iff its version is still `expected_version`.
    Bumps the version. On conflict the session is rolled back and ConflictError raised.
    """
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.version == expected_version)
        .values(version=Booking.version + 1, **values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        booking_id = booking.id
        await db.rollback()
        record_transition("conflict")
        logger.info("version_conflict", booking_id=booking_id, expected=expected_version)
        raise ConflictError(
            "Booking was modified concurrently. Re-fetch and retry.",
            details={"booking_id": booking_id, "expected_version": expected_version},
        )

    await db.refresh(booking)
    return booking


async def create_booking_record(db: AsyncSession, **values: Any) -> Booking:
    booking = Booking(version=1, **values)
    db.add(booking)
    await db.flush()
    await db.refresh(booking)
    return booking
