"""
Concurrency tests: optimistic versioning under racing writers.

The writers are interleaved deterministically: the loser's snapshot is taken
before the winner commits, which is exactly the window a real race opens.
"""

from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import ConflictError
from booking_core.domain.enums import BookingStatus as S, GatewayOutcome
from booking_core.models.booking import Booking
from booking_core.services import booking_store, payment_ledger
from booking_core.services.audit_trail import list_entries
from booking_core.services.booking_store import compare_and_swap, get_booking
from booking_core.services.state_machine import request_transition
from tests.conftest import ADMIN, DRIVER


@pytest.mark.asyncio
async def test_same_stale_version_one_winner(db_session: AsyncSession, make_booking):
    """Two transitions carrying the same version: exactly one succeeds."""
    booking = await make_booking()
    version = booking.version

    winner = await request_transition(db_session, booking.id, S.ACCEPTED, DRIVER, version)
    await db_session.commit()

    with pytest.raises(ConflictError):
        await request_transition(
            db_session, booking.id, S.CANCELLED, ADMIN, version, reason="Duplicate booking"
        )

    fresh = await get_booking(db_session, booking.id)
    assert fresh.status == S.ACCEPTED.value
    assert fresh.version == winner.version == version + 1
    assert [e.status for e in await list_entries(db_session, booking.id)] == ["pending", "accepted"]


@pytest.mark.asyncio
async def test_cas_loses_race_after_read(db_session: AsyncSession, make_booking):
    """A writer that commits between our read and our CAS makes the CAS fail."""
    booking = await make_booking()
    loaded = await get_booking(db_session, booking.id)

    # Another writer commits first
    await db_session.execute(
        update(Booking).where(Booking.id == booking.id).values(version=Booking.version + 1)
    )
    await db_session.commit()

    with pytest.raises(ConflictError):
        await compare_and_swap(db_session, loaded, expected_version=1, status=S.ACCEPTED.value)

    fresh = await get_booking(db_session, booking.id)
    assert fresh.status == S.PENDING.value
    assert fresh.version == 2


@pytest.mark.asyncio
async def test_losing_writer_leaves_no_history(db_session: AsyncSession, make_booking):
    """The version check passes but the CAS loses: nothing from the loser is kept."""
    booking = await make_booking()
    real_cas = booking_store.compare_and_swap

    async def racing_cas(db, target, expected_version, **values):
        await db.execute(
            update(Booking).where(Booking.id == target.id).values(version=Booking.version + 1)
        )
        return await real_cas(db, target, expected_version, **values)

    with patch("booking_core.services.state_machine.compare_and_swap", racing_cas):
        with pytest.raises(ConflictError):
            await request_transition(db_session, booking.id, S.ACCEPTED, DRIVER, booking.version)

    fresh = await get_booking(db_session, booking.id)
    assert fresh.status == S.PENDING.value
    assert [e.status for e in await list_entries(db_session, booking.id)] == ["pending"]


@pytest.mark.asyncio
async def test_webhook_retries_version_conflicts(db_session: AsyncSession, make_booking):
    """Gateway confirmations carry no version, so a lost CAS is retried internally."""
    booking = await make_booking(total="400")
    real_cas = payment_ledger.compare_and_swap
    calls = {"n": 0}

    async def flaky_cas(db, target, expected_version, **values):
        calls["n"] += 1
        if calls["n"] == 1:
            # A driver action lands between the webhook's read and write
            await db.execute(
                update(Booking).where(Booking.id == target.id).values(version=Booking.version + 1)
            )
            await db.commit()
        return await real_cas(db, target, expected_version, **values)

    with patch("booking_core.services.payment_ledger.compare_and_swap", flaky_cas):
        booking, replayed = await payment_ledger.apply_gateway_confirmation(
            db_session, booking.id, "pay_1", GatewayOutcome.COMPLETED, "race-1"
        )

    assert not replayed
    assert calls["n"] == 2
    assert booking.payment_status == "completed"
    assert booking.version == 3


@pytest.mark.asyncio
async def test_every_mutation_bumps_version(db_session: AsyncSession, make_booking, advance):
    booking = await make_booking()
    versions = [booking.version]
    for target in (S.ACCEPTED, S.STARTED, S.COMPLETED):
        booking = await advance(booking, target)
        versions.append(booking.version)

    assert versions == [1, 2, 3, 4]
