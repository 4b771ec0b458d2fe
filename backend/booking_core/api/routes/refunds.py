"""
Refund endpoints. Admin only.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.api.deps import mutation_response
from booking_core.core.security import get_current_actor
from booking_core.db.session import get_db
from booking_core.domain.actors import Actor
from booking_core.schemas.booking import BookingResponse
from booking_core.schemas.cancellation import RefundCompleteRequest, RefundInitiateRequest
from booking_core.services.gateway_factory import get_gateway
from booking_core.services.interfaces.gateway import ReconciliationGateway
from booking_core.services.refund_processor import complete_refund, initiate_refund

router = APIRouter(prefix="/bookings", tags=["Refunds"])


@router.post("/{booking_id}/refund/initiate", response_model=BookingResponse)
async def initiate_refund_endpoint(
    booking_id: int,
    data: RefundInitiateRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: ReconciliationGateway = Depends(get_gateway),
):
    """
    gateway: calls the payment provider and moves the refund to initiated.
    manual: admin asserts the refund was paid; moves straight to completed.
    A provider failure returns 503 and leaves the refund pending.
    """
    booking = await initiate_refund(
        db, gateway, booking_id, actor, data.version,
        method=data.method, reason=data.reason, notes=data.notes,
    )
    return await mutation_response(db, booking)


@router.post("/{booking_id}/refund/complete", response_model=BookingResponse)
async def complete_refund_endpoint(
    booking_id: int,
    data: RefundCompleteRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await complete_refund(db, booking_id, actor, data.version, notes=data.notes)
    return await mutation_response(db, booking)
