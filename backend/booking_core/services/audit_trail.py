"""
Append-only booking status history.

`append_entry` is the only write. Reads are lazy: `iter_entries` pages through
the trail by id so arbitrarily long histories never load at once, and the same
ordered sequence drives both display and the "restore prior status" rule of the
cancellation workflow.
"""

from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.db.base import utcnow
from booking_core.domain.actors import Actor
from booking_core.domain.enums import BookingStatus
from booking_core.models.audit import StatusHistoryEntry

PAGE_SIZE = 100


def append_entry(
    db: AsyncSession,
    booking_id: int,
    status: BookingStatus,
    actor: Actor,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> StatusHistoryEntry:
    entry = StatusHistoryEntry(
        booking_id=booking_id,
        status=status.value,
        timestamp=utcnow(),
        updated_by=actor.id,
        updated_by_model=actor.model.value,
        reason=reason,
        notes=notes,
    )
    db.add(entry)
    return entry


async def iter_entries(
    db: AsyncSession, booking_id: int, page_size: int = PAGE_SIZE
) -> AsyncIterator[StatusHistoryEntry]:
    """Yield entries oldest first, fetching one page at a time."""
    last_id = 0
    while True:
        result = await db.execute(
            select(StatusHistoryEntry)
            .where(StatusHistoryEntry.booking_id == booking_id, StatusHistoryEntry.id > last_id)
            .order_by(StatusHistoryEntry.id.asc())
            .limit(page_size)
        )
        page = list(result.scalars().all())
        for entry in page:
            yield entry
        if len(page) < page_size:
            return
        last_id = page[-1].id


async def list_entries(db: AsyncSession, booking_id: int) -> list[StatusHistoryEntry]:
    return [entry async for entry in iter_entries(db, booking_id)]


async def status_before_cancellation_request(
    db: AsyncSession, booking_id: int
) -> Optional[BookingStatus]:
    """
    The status the booking held immediately before its most recent move into
    cancellation_requested, or None if the trail has no such move.
    """
    previous: Optional[str] = None
    found: Optional[str] = None
    async for entry in iter_entries(db, booking_id):
        if entry.status == BookingStatus.CANCELLATION_REQUESTED.value and previous is not None:
            found = previous
        previous = entry.status
    return BookingStatus(found) if found else None
