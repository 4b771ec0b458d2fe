"""
Shared route helpers.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.models.booking import Booking
from booking_core.schemas.booking import BookingResponse
from booking_core.services.cache_service import invalidate_booking_cache


async def commit_and_invalidate(db: AsyncSession) -> None:
    """Commit first, so a listing read between the two cannot re-cache the old rows."""
    await db.commit()
    await invalidate_booking_cache()


async def mutation_response(db: AsyncSession, booking: Booking, replayed: bool = False) -> BookingResponse:
    """Projection returned by every mutating endpoint. Replays changed nothing, so the cache stays."""
    if not replayed:
        await commit_and_invalidate(db)
    return BookingResponse.from_booking(booking, replayed=replayed)
