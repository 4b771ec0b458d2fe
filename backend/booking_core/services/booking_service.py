"""
Booking creation.

The quoted price arrives as an immutable snapshot and is stored verbatim.
Vehicle category capabilities decide whether a split payment is allowed and
how many passengers fit; nothing here recomputes a fare.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import ForbiddenError, InvalidStateError
from booking_core.core.logging import get_logger
from booking_core.db.session import retry_on_store_errors
from booking_core.domain.actors import Actor
from booking_core.domain.enums import ActorModel, BookingStatus, PaymentMethod, PaymentStatus, TripType
from booking_core.domain.payments import to_money
from booking_core.domain.vehicles import VehicleCategory
from booking_core.models.booking import Booking
from booking_core.services import audit_trail
from booking_core.services.booking_store import create_booking_record, get_booking
from booking_core.services.payment_ledger import Split, resolve_split, split_columns

logger = get_logger(__name__)


@retry_on_store_errors
async def create_booking(
    db: AsyncSession,
    actor: Actor,
    driver_id: str,
    vehicle_category: VehicleCategory,
    rate_per_km: Decimal,
    total_amount: Decimal,
    distance: Decimal,
    payment_method: PaymentMethod,
    trip_type: TripType = TripType.ONE_WAY,
    passengers: int = 1,
    is_partial_payment: Optional[bool] = None,
    split: Optional[Split] = None,
) -> Booking:
    """Create a pending booking at version 1 with its first audit entry."""
    if actor.model != ActorModel.USER:
        raise ForbiddenError("Only riders may create bookings")

    capabilities = vehicle_category.capabilities
    if passengers > capabilities.max_passengers:
        raise InvalidStateError(
            f"A {vehicle_category.value} carries at most {capabilities.max_passengers} passengers",
            code="too_many_passengers",
            details={"passengers": passengers},
        )

    total = to_money(total_amount)
    resolved = resolve_split(vehicle_category, total, payment_method, is_partial_payment, split)

    booking = await create_booking_record(
        db,
        user_id=actor.id,
        driver_id=driver_id,
        vehicle_category=vehicle_category.value,
        passengers=passengers,
        status=BookingStatus.PENDING.value,
        rate_per_km=to_money(rate_per_km),
        total_amount=total,
        trip_type=trip_type.value,
        distance=to_money(distance),
        payment_method=payment_method.value,
        payment_status=PaymentStatus.PENDING.value,
        **split_columns(resolved),
    )
    audit_trail.append_entry(db, booking.id, BookingStatus.PENDING, actor, reason="Booking created")
    await db.flush()

    logger.info(
        "booking_created",
        booking_id=booking.id,
        booking_number=booking.booking_number,
        user_id=actor.id,
        driver_id=driver_id,
        vehicle_category=vehicle_category.value,
        total_amount=str(total),
        is_partial=resolved is not None,
    )
    return await get_booking(db, booking.id)
