"""
Booking endpoints: creation, projections and status transitions.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.api.deps import mutation_response
from booking_core.core.logging import get_logger
from booking_core.core.security import get_current_actor
from booking_core.db.session import get_db
from booking_core.domain.actors import Actor
from booking_core.domain.enums import BookingStatus, PaymentStatus
from booking_core.domain.payments import settled_amount
from booking_core.schemas.booking import (
    BookingCreate,
    BookingHistoryResponse,
    BookingListResponse,
    BookingResponse,
    HistoryEntryResponse,
    StatusUpdate,
)
from booking_core.schemas.payment import LedgerEntryResponse, LedgerResponse
from booking_core.services import audit_trail
from booking_core.services.booking_service import create_booking
from booking_core.services.booking_store import ensure_participant, get_booking
from booking_core.services.cache_service import get_cached_listing, make_list_key, set_cached_listing
from booking_core.services.payment_ledger import Split, ledger_balance, list_ledger_entries
from booking_core.services.query_service import list_bookings, visibility_scope
from booking_core.services.state_machine import request_transition

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    data: BookingCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Create a pending booking from a quoted price snapshot."""
    split = Split(online=data.split.online, cash=data.split.cash) if data.split else None
    booking = await create_booking(
        db,
        actor,
        driver_id=data.driver_id,
        vehicle_category=data.vehicle_category,
        rate_per_km=data.pricing.rate_per_km,
        total_amount=data.pricing.total_amount,
        distance=data.pricing.distance,
        payment_method=data.payment_method,
        trip_type=data.pricing.trip_type,
        passengers=data.passengers,
        is_partial_payment=data.is_partial_payment,
        split=split,
    )
    return await mutation_response(db, booking)


@router.get("/", response_model=BookingListResponse)
async def list_bookings_endpoint(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    date_from: Optional[datetime] = Query(None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(None, alias="dateTo"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Read-only listing projection for dashboards and exports.
    Cached in Redis per caller scope; every mutation invalidates it.
    """
    key = make_list_key(
        visibility_scope(actor),
        status=status_filter.value if status_filter else "",
        payment_status=payment_status.value if payment_status else "",
        date_from=date_from.isoformat() if date_from else "",
        date_to=date_to.isoformat() if date_to else "",
        page=page,
        limit=limit,
    )
    cached = await get_cached_listing(key)
    if cached:
        logger.info("bookings_list_cache_hit", page=page)
        cached["cached"] = True
        return BookingListResponse(**cached)

    bookings, total = await list_bookings(
        db, actor,
        status=status_filter,
        payment_status=payment_status,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    response_data = {
        "bookings": [BookingResponse.from_booking(b).model_dump(mode="json") for b in bookings],
        "total": total,
        "page": page,
        "limit": limit,
        "cached": False,
    }
    await set_cached_listing(key, response_data)
    return BookingListResponse(**response_data)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Current projection, including the version needed for the next mutation."""
    booking = await get_booking(db, booking_id)
    ensure_participant(booking, actor)
    return BookingResponse.from_booking(booking)


@router.get("/{booking_id}/history", response_model=BookingHistoryResponse)
async def get_history_endpoint(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id)
    ensure_participant(booking, actor)
    entries = await audit_trail.list_entries(db, booking_id)
    return BookingHistoryResponse(
        booking_id=booking_id,
        entries=[HistoryEntryResponse.model_validate(e) for e in entries],
    )


@router.get("/{booking_id}/ledger", response_model=LedgerResponse)
async def get_ledger_endpoint(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking(db, booking_id)
    ensure_participant(booking, actor)
    entries = await list_ledger_entries(db, booking_id)
    return LedgerResponse(
        booking_id=booking_id,
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        balance=ledger_balance(entries),
        settled_amount=settled_amount(booking),
    )


@router.post("/{booking_id}/status", response_model=BookingResponse)
async def update_status_endpoint(
    booking_id: int,
    data: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Move a booking along the transition table.

    Returns 409 when the version is stale or the edge is not allowed.
    Admins may pass override=true with a reason for an edge outside the table.
    """
    booking = await request_transition(
        db,
        booking_id,
        data.target_status,
        actor,
        data.version,
        reason=data.reason,
        notes=data.notes,
        override=data.override,
        refund_amount=data.refund_amount,
    )
    return await mutation_response(db, booking)
