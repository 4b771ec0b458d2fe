"""
Read-only booking projections for listing and export collaborators.

Pure queries: nothing here writes. Visibility follows the caller's role, so
the cache key built by the route includes the scope.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.domain.actors import Actor
from booking_core.domain.enums import ActorModel, BookingStatus, PaymentStatus
from booking_core.models.booking import Booking


def visibility_scope(actor: Actor) -> str:
    if actor.model == ActorModel.ADMIN:
        return "all"
    return f"{actor.model.value.lower()}:{actor.id}"


def _apply_scope(query, actor: Actor):
    if actor.model == ActorModel.USER:
        return query.where(Booking.user_id == actor.id)
    if actor.model == ActorModel.DRIVER:
        return query.where(Booking.driver_id == actor.id)
    return query


async def list_bookings(
    db: AsyncSession,
    actor: Actor,
    status: Optional[BookingStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Booking], int]:
    """Filtered page of bookings, newest first, plus the total match count."""
    query = _apply_scope(select(Booking), actor)
    if status is not None:
        query = query.where(Booking.status == status.value)
    if payment_status is not None:
        query = query.where(Booking.payment_status == payment_status.value)
    if date_from is not None:
        query = query.where(Booking.created_at >= date_from)
    if date_to is not None:
        query = query.where(Booking.created_at <= date_to)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

    offset = (page - 1) * limit
    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total
