"""
Tests for the refund processor.
"""

from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.exceptions import (
    AmountMismatchError,
    ForbiddenError,
    GatewayUnavailableError,
    InvalidStateError,
)
from booking_core.domain.enums import ActorModel, GatewayOutcome, PaymentMethod, RefundMethod
from booking_core.domain.vehicles import VehicleCategory
from booking_core.services.booking_store import get_booking
from booking_core.services.cancellation_workflow import approve_cancellation, request_cancellation
from booking_core.services.payment_ledger import (
    apply_gateway_confirmation,
    ledger_balance,
    list_ledger_entries,
    mark_cash_collected,
    settle_cash_payment,
)
from booking_core.services.refund_processor import complete_refund, initiate_refund
from tests.conftest import ADMIN, DRIVER, RIDER


@pytest.fixture
def cancelled_paid_booking(db_session: AsyncSession, make_booking):
    """Online-paid booking, cancelled on request and approved with a full refund."""

    async def _make(total: str = "500"):
        booking = await make_booking(total=total)
        booking, _ = await apply_gateway_confirmation(
            db_session, booking.id, "pay_R1", GatewayOutcome.COMPLETED, f"evt-{booking.id}"
        )
        await db_session.commit()
        booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Sick")
        await db_session.commit()
        booking = await approve_cancellation(db_session, booking.id, ADMIN, booking.version)
        await db_session.commit()
        return booking

    return _make


@pytest.mark.asyncio
async def test_gateway_refund_lifecycle(db_session: AsyncSession, cancelled_paid_booking, gateway):
    booking = await cancelled_paid_booking()

    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    await db_session.commit()

    assert booking.cancellation.refund_status == "initiated"
    assert booking.cancellation.refund_reference == "rfnd_1"
    assert gateway.calls[0]["payment_reference"] == "pay_R1"
    assert gateway.calls[0]["amount"] == Decimal("500.00")

    booking = await complete_refund(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()

    assert booking.cancellation.refund_status == "completed"
    assert booking.cancellation.refund_completed_at is not None
    assert ledger_balance(await list_ledger_entries(db_session, booking.id)) == Decimal("0.00")


@pytest.mark.asyncio
async def test_gateway_failure_leaves_refund_pending(db_session: AsyncSession, cancelled_paid_booking, gateway):
    booking = await cancelled_paid_booking()
    version = booking.version
    gateway.fail = True

    with pytest.raises(GatewayUnavailableError):
        await initiate_refund(db_session, gateway, booking.id, ADMIN, version, RefundMethod.GATEWAY)

    booking = await get_booking(db_session, booking.id)
    assert booking.cancellation.refund_status == "pending"
    assert booking.version == version

    gateway.fail = False
    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, version, RefundMethod.GATEWAY)
    assert booking.cancellation.refund_status == "initiated"
    # Both attempts carried the same provider idempotency key
    assert gateway.calls[0]["idempotency_key"] == gateway.calls[1]["idempotency_key"]


@pytest.mark.asyncio
async def test_complete_requires_initiated(db_session: AsyncSession, cancelled_paid_booking, gateway):
    booking = await cancelled_paid_booking()

    with pytest.raises(InvalidStateError):
        await complete_refund(db_session, booking.id, ADMIN, booking.version)

    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    await db_session.commit()
    booking = await complete_refund(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()

    with pytest.raises(InvalidStateError):
        await complete_refund(db_session, booking.id, ADMIN, booking.version)


@pytest.mark.asyncio
async def test_refund_only_initiated_once(db_session: AsyncSession, cancelled_paid_booking, gateway):
    booking = await cancelled_paid_booking()
    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    await db_session.commit()

    with pytest.raises(InvalidStateError):
        await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.MANUAL)


@pytest.mark.asyncio
async def test_refunds_are_admin_only(db_session: AsyncSession, cancelled_paid_booking, gateway):
    booking = await cancelled_paid_booking()
    with pytest.raises(ForbiddenError):
        await initiate_refund(db_session, gateway, booking.id, DRIVER, booking.version, RefundMethod.MANUAL)


@pytest.mark.asyncio
async def test_nothing_to_refund(db_session: AsyncSession, make_booking, gateway):
    booking = await make_booking()
    booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Changed plans")
    await db_session.commit()
    booking = await approve_cancellation(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()

    with pytest.raises(InvalidStateError):
        await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.MANUAL)


@pytest.mark.asyncio
async def test_gateway_refund_needs_online_payment(db_session: AsyncSession, make_booking, gateway):
    """A cash-settled booking has no provider payment to refund through the gateway."""
    booking = await make_booking(category=VehicleCategory.AUTO, total="120", method=PaymentMethod.CASH)
    booking = await settle_cash_payment(db_session, booking.id, DRIVER, DRIVER.id, ActorModel.DRIVER, booking.version)
    await db_session.commit()
    booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Sick")
    await db_session.commit()
    booking = await approve_cancellation(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()

    with pytest.raises(InvalidStateError):
        await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_gateway_refund_limited_to_online_capture(db_session: AsyncSession, make_booking, gateway):
    """A 150/88 split with both legs settled: the provider only ever held 150."""
    booking = await make_booking(total="238", split=("150", "88"))
    booking, _ = await apply_gateway_confirmation(
        db_session, booking.id, "pay_S1", GatewayOutcome.COMPLETED, f"evt-{booking.id}"
    )
    await db_session.commit()
    booking, _ = await mark_cash_collected(
        db_session, booking.id, DRIVER, DRIVER.id, ActorModel.DRIVER, booking.version
    )
    await db_session.commit()
    booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Sick")
    await db_session.commit()
    booking = await approve_cancellation(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()
    assert booking.cancellation.refund_amount == Decimal("238.00")

    with pytest.raises(AmountMismatchError) as exc_info:
        await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    assert exc_info.value.code == "refund_exceeds_capture"
    assert gateway.calls == []

    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.MANUAL)
    assert booking.cancellation.refund_status == "completed"


@pytest.mark.asyncio
async def test_gateway_refund_of_online_share(db_session: AsyncSession, make_booking, gateway):
    """Approving only the online share keeps the gateway path open."""
    booking = await make_booking(total="238", split=("150", "88"))
    booking, _ = await apply_gateway_confirmation(
        db_session, booking.id, "pay_S2", GatewayOutcome.COMPLETED, f"evt-{booking.id}"
    )
    await db_session.commit()
    booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Sick")
    await db_session.commit()
    booking = await approve_cancellation(
        db_session, booking.id, ADMIN, booking.version, refund_amount=Decimal("150")
    )
    await db_session.commit()

    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    assert booking.cancellation.refund_status == "initiated"
    assert gateway.calls[0]["payment_reference"] == "pay_S2"
    assert gateway.calls[0]["amount"] == Decimal("150.00")


@pytest.mark.asyncio
async def test_refund_requires_cancelled_booking(db_session: AsyncSession, make_booking, gateway):
    booking = await make_booking()
    with pytest.raises(InvalidStateError):
        await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.MANUAL)


@pytest.mark.asyncio
async def test_payment_confirmed_after_cancellation_is_refundable(db_session: AsyncSession, make_booking, gateway):
    """The online leg settles only after approval; the pending refund picks it up."""
    booking = await make_booking(total="238", split=("150", "88"))
    booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Changed plans")
    await db_session.commit()
    booking = await approve_cancellation(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()
    assert booking.cancellation.refund_amount == 0

    booking, replayed = await apply_gateway_confirmation(
        db_session, booking.id, "pay_L1", GatewayOutcome.COMPLETED, "evt-late"
    )
    await db_session.commit()

    assert not replayed
    assert booking.status == "cancelled"
    assert booking.online_payment_status == "completed"
    assert booking.cancellation.refund_amount == Decimal("150.00")
    assert booking.cancellation.refund_status == "pending"

    booking = await initiate_refund(db_session, gateway, booking.id, ADMIN, booking.version, RefundMethod.GATEWAY)
    assert booking.cancellation.refund_status == "initiated"
    assert gateway.calls[0]["payment_reference"] == "pay_L1"
    assert gateway.calls[0]["amount"] == Decimal("150.00")


@pytest.mark.asyncio
async def test_late_failure_leaves_refund_alone(db_session: AsyncSession, make_booking):
    booking = await make_booking(total="238", split=("150", "88"))
    booking = await request_cancellation(db_session, booking.id, RIDER, booking.version, "Changed plans")
    await db_session.commit()
    booking = await approve_cancellation(db_session, booking.id, ADMIN, booking.version)
    await db_session.commit()

    booking, _ = await apply_gateway_confirmation(
        db_session, booking.id, "pay_L2", GatewayOutcome.FAILED, "evt-late-fail"
    )
    assert booking.cancellation.refund_amount == 0
