"""
Cancellation workflow endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.api.deps import mutation_response
from booking_core.core.security import get_current_actor
from booking_core.db.session import get_db
from booking_core.domain.actors import Actor
from booking_core.schemas.booking import BookingResponse
from booking_core.schemas.cancellation import (
    CancellationApprove,
    CancellationReject,
    CancellationRequest,
)
from booking_core.services.cancellation_workflow import (
    approve_cancellation,
    reject_cancellation,
    request_cancellation,
)

router = APIRouter(prefix="/bookings", tags=["Cancellations"])


@router.post("/{booking_id}/cancellation/request", response_model=BookingResponse)
async def request_cancellation_endpoint(
    booking_id: int,
    data: CancellationRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Rider (or admin) asks for a pending/accepted booking to be cancelled."""
    booking = await request_cancellation(db, booking_id, actor, data.version, data.reason, data.notes)
    return await mutation_response(db, booking)


@router.post("/{booking_id}/cancellation/approve", response_model=BookingResponse)
async def approve_cancellation_endpoint(
    booking_id: int,
    data: CancellationApprove,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Admin only. Cancels the booking; the refund stays pending."""
    booking = await approve_cancellation(
        db, booking_id, actor, data.version,
        reason=data.reason, notes=data.notes, refund_amount=data.refund_amount,
    )
    return await mutation_response(db, booking)


@router.post("/{booking_id}/cancellation/reject", response_model=BookingResponse)
async def reject_cancellation_endpoint(
    booking_id: int,
    data: CancellationReject,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Admin only. Restores the status the booking held before the request."""
    booking = await reject_cancellation(
        db, booking_id, actor, data.version, reason=data.reason, notes=data.notes,
    )
    return await mutation_response(db, booking)
