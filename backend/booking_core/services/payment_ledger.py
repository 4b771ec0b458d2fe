"""
Payment ledger and reconciliation.

IDEMPOTENCY STRATEGY: unique key written with the state change
==============================================================

Problem:
  Gateways retry webhooks, drivers double-tap "cash collected", and two
  deliveries of the same confirmation can race each other. A leg must never
  be credited twice.

Solution:
  Every confirmation that carries an idempotency key writes a ledger row with
  that key in the same transaction as the booking update. The column is
  unique, so:

  1. A replay that arrives after the first commit finds the row and returns
     the current booking unchanged (`replayed=True`).
  2. A replay racing the first delivery loses either the version CAS or the
     unique insert; both roll back, and the retry finds the committed row.

  Gateway confirmations carry no booking version, so they re-read and retry
  version conflicts internally up to MAX_RETRY_ATTEMPTS. Actor-driven calls
  (cash collection, payment intent) take the caller's version and fail fast.

Leg rules:
  - A completed/collected leg is never downgraded. A late `failed` report is
    recorded with applied=False and otherwise ignored.
  - A failed leg can be upgraded by a later successful confirmation.
  - Booking-level payment_status is always the derived overall status.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_core.core.config import get_settings
from booking_core.core.exceptions import (
    AmountMismatchError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
)
from booking_core.core.logging import get_logger
from booking_core.core.metrics import record_cash_collection, record_payment_confirmation
from booking_core.db.base import utcnow
from booking_core.db.session import retry_on_store_errors
from booking_core.domain.actors import Actor
from booking_core.domain.enums import (
    ActorModel,
    BookingStatus,
    CashPaymentStatus,
    GatewayOutcome,
    LedgerEntryKind,
    PaymentLeg,
    PaymentMethod,
    PaymentStatus,
    REFUNDABLE_REQUESTS,
    RefundStatus,
    TERMINAL_STATUSES,
)
from booking_core.domain.payments import (
    any_leg_settled,
    default_split,
    gateway_leg,
    overall_status_after,
    payment_legs,
    to_money,
)
from booking_core.domain.vehicles import VehicleCategory
from booking_core.models.booking import Booking
from booking_core.models.ledger import PaymentLedgerEntry
from booking_core.services.booking_store import (
    compare_and_swap,
    ensure_participant,
    ensure_version,
    get_booking,
)

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class Split:
    online: Decimal
    cash: Decimal


def validate_split(total: Decimal, split: Split) -> Split:
    """Both legs positive and summing exactly to the total, in minor units."""
    total = to_money(total)
    online, cash = to_money(split.online), to_money(split.cash)
    if online <= 0 or cash <= 0 or online + cash != total:
        raise AmountMismatchError(
            "Partial payment split must be two positive amounts summing to the total",
            details={"online": str(online), "cash": str(cash), "total": str(total)},
        )
    return Split(online=online, cash=cash)


def resolve_split(
    category: VehicleCategory,
    total: Decimal,
    method: PaymentMethod,
    is_partial: Optional[bool],
    split: Optional[Split],
) -> Optional[Split]:
    """
    The split to store for a new booking or intent, or None for a single leg.

    An explicit split wins. Otherwise a cash booking on a split-capable
    category gets the default online share unless partial payment was
    explicitly declined.
    """
    wants_split = split is not None or is_partial is True
    if wants_split and not category.capabilities.supports_split_payment:
        raise InvalidStateError(
            f"Vehicle category {category.value} does not support partial payments",
            code="split_not_supported",
        )
    if split is not None:
        return validate_split(total, split)
    if is_partial is False:
        return None
    if is_partial or (method == PaymentMethod.CASH and category.capabilities.supports_split_payment):
        online, cash = default_split(total, settings.DEFAULT_ONLINE_SHARE)
        return validate_split(total, Split(online=online, cash=cash))
    return None


def split_columns(split: Optional[Split]) -> dict:
    if split is None:
        return {
            "is_partial_payment": False,
            "online_amount": None,
            "cash_amount": None,
            "online_payment_status": None,
            "cash_payment_status": None,
            "online_payment_id": None,
        }
    return {
        "is_partial_payment": True,
        "online_amount": split.online,
        "cash_amount": split.cash,
        "online_payment_status": PaymentStatus.PENDING.value,
        "cash_payment_status": CashPaymentStatus.PENDING.value,
        "online_payment_id": None,
    }


async def _entry_for_key(db: AsyncSession, idempotency_key: str) -> Optional[PaymentLedgerEntry]:
    result = await db.execute(
        select(PaymentLedgerEntry).where(PaymentLedgerEntry.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def _replayed(
    db: AsyncSession, booking_id: int, idempotency_key: Optional[str]
) -> Optional[Booking]:
    """The current booking if `idempotency_key` was already applied to it, else None."""
    if not idempotency_key:
        return None
    entry = await _entry_for_key(db, idempotency_key)
    if entry is None:
        return None
    if entry.booking_id != booking_id:
        raise InvalidStateError(
            "Idempotency key was already used for a different booking",
            code="idempotency_key_reused",
            details={"booking_id": booking_id},
        )
    return await get_booking(db, booking_id)


def _leg_amount(booking: Booking, leg: PaymentLeg) -> Decimal:
    for state in payment_legs(booking):
        if state.leg == leg:
            return state.amount
    raise InvalidStateError(f"Booking has no {leg.value} payment leg", details={"booking_id": booking.id})


def _reflect_in_refund(booking: Booking, record, amount: Decimal, leg: PaymentLeg) -> None:
    """
    Money settled after the booking was cancelled belongs to the rider.

    A still-pending refund grows by the settled amount. A refund that has
    already started cannot move back, so the excess is only flagged.
    """
    if (
        booking.status != BookingStatus.CANCELLED.value
        or record is None
        or record.request_status not in REFUNDABLE_REQUESTS
    ):
        return
    if record.refund_status == RefundStatus.PENDING.value:
        record.refund_amount = to_money(record.refund_amount) + amount
        logger.warning(
            "refund_raised_for_late_payment",
            booking_id=booking.id,
            leg=leg.value,
            amount=str(amount),
            refund_amount=str(record.refund_amount),
        )
        return
    record_payment_confirmation("settled_after_refund")
    logger.error(
        "payment_settled_after_refund",
        booking_id=booking.id,
        leg=leg.value,
        amount=str(amount),
        refund_status=record.refund_status,
    )


def _confirmation_changes(
    booking: Booking, leg: PaymentLeg, outcome: GatewayOutcome, transaction_id: str
) -> Optional[dict]:
    """Column changes a confirmation causes, or None when it must not touch the leg."""
    if leg == PaymentLeg.ONLINE:
        current = booking.online_payment_status
    else:
        current = booking.payment_status
    if current == PaymentStatus.COMPLETED.value:
        return None
    if outcome == GatewayOutcome.FAILED and current == PaymentStatus.FAILED.value:
        return None

    new_status = PaymentStatus.COMPLETED.value if outcome == GatewayOutcome.COMPLETED else PaymentStatus.FAILED.value
    if leg == PaymentLeg.ONLINE:
        changes = {"online_payment_status": new_status, "online_payment_id": transaction_id}
        changes["payment_status"] = overall_status_after(booking, **changes).value
    else:
        changes = {"payment_status": new_status, "payment_transaction_id": transaction_id}
    if changes["payment_status"] == PaymentStatus.COMPLETED.value:
        changes["payment_completed_at"] = utcnow()
    return changes


async def _apply_gateway_confirmation_once(
    db: AsyncSession,
    booking_id: int,
    transaction_id: str,
    outcome: GatewayOutcome,
    idempotency_key: str,
    amount: Optional[Decimal],
) -> tuple[Booking, bool]:
    booking = await _replayed(db, booking_id, idempotency_key)
    if booking is not None:
        record_payment_confirmation("replayed")
        logger.info(
            "payment_confirmation_replayed",
            booking_id=booking_id,
            idempotency_key=idempotency_key,
            transaction_id=transaction_id,
        )
        return booking, True

    booking = await get_booking(db, booking_id)
    if not booking.is_partial_payment and booking.payment_method == PaymentMethod.CASH.value:
        raise InvalidStateError(
            "Cash bookings without an online leg cannot be settled by the gateway",
            details={"booking_id": booking_id},
        )
    leg = gateway_leg(booking)
    expected = _leg_amount(booking, leg)
    if amount is not None and to_money(amount) != expected:
        record_payment_confirmation("rejected")
        raise AmountMismatchError(
            "Confirmed amount does not match the payment leg",
            details={"booking_id": booking_id, "leg": leg.value,
                     "expected": str(expected), "received": str(to_money(amount))},
        )

    changes = _confirmation_changes(booking, leg, outcome, transaction_id)
    if changes is not None:
        record = booking.cancellation
        booking = await compare_and_swap(db, booking, booking.version, **changes)
        if outcome == GatewayOutcome.COMPLETED:
            _reflect_in_refund(booking, record, expected, leg)

    db.add(PaymentLedgerEntry(
        booking_id=booking_id,
        kind=LedgerEntryKind.GATEWAY_CONFIRMATION.value,
        leg=leg.value,
        amount=expected,
        outcome=outcome.value,
        applied=changes is not None,
        idempotency_key=idempotency_key,
        transaction_id=transaction_id,
    ))
    await db.flush()

    if changes is None:
        record_payment_confirmation("ignored")
        logger.info(
            "payment_confirmation_ignored",
            booking_id=booking_id,
            leg=leg.value,
            outcome=outcome.value,
            transaction_id=transaction_id,
        )
    else:
        record_payment_confirmation("applied")
        logger.info(
            "payment_confirmation_applied",
            booking_id=booking_id,
            leg=leg.value,
            outcome=outcome.value,
            transaction_id=transaction_id,
            payment_status=changes["payment_status"],
        )
    return await get_booking(db, booking_id), False


@retry_on_store_errors
async def apply_gateway_confirmation(
    db: AsyncSession,
    booking_id: int,
    transaction_id: str,
    outcome: GatewayOutcome,
    idempotency_key: str,
    amount: Optional[Decimal] = None,
) -> tuple[Booking, bool]:
    """
    Apply a gateway payment confirmation exactly once.

    Returns the booking and whether the key had already been applied.
    """
    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        try:
            return await _apply_gateway_confirmation_once(
                db, booking_id, transaction_id, outcome, idempotency_key, amount
            )
        except ConflictError:
            # compare_and_swap already rolled back
            logger.info("payment_confirmation_retry", booking_id=booking_id, attempt=attempt)
            if attempt == settings.MAX_RETRY_ATTEMPTS:
                raise
        except IntegrityError:
            # A concurrent delivery of the same key committed first
            await db.rollback()
            logger.info(
                "payment_confirmation_key_race",
                booking_id=booking_id,
                idempotency_key=idempotency_key,
                attempt=attempt,
            )
            if attempt == settings.MAX_RETRY_ATTEMPTS:
                raise ConflictError(
                    "Payment confirmation is being applied concurrently. Retry.",
                    details={"booking_id": booking_id},
                )
    raise ConflictError("Payment confirmation could not be applied", details={"booking_id": booking_id})


def _ensure_collector(booking: Booking, actor: Actor, collected_by: str, collected_by_model: ActorModel) -> None:
    if actor.model == ActorModel.USER:
        raise ForbiddenError("Only the assigned driver or an admin may record cash collection")
    ensure_participant(booking, actor)
    if collected_by != actor.id or collected_by_model != actor.model:
        raise ForbiddenError(
            "Cash collector must be the authenticated actor",
            details={"collected_by": collected_by, "collected_by_model": collected_by_model.value},
        )


@retry_on_store_errors
async def mark_cash_collected(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    collected_by: str,
    collected_by_model: ActorModel,
    expected_version: int,
    idempotency_key: Optional[str] = None,
) -> tuple[Booking, bool]:
    """Settle the cash leg of a split payment. Returns the booking and a replay flag."""
    booking = await _replayed(db, booking_id, idempotency_key)
    if booking is not None:
        record_cash_collection(replayed=True)
        logger.info("cash_collection_replayed", booking_id=booking_id, idempotency_key=idempotency_key)
        return booking, True

    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    _ensure_collector(booking, actor, collected_by, collected_by_model)
    if not booking.is_partial_payment:
        raise InvalidStateError(
            "Booking has no partial-payment cash leg",
            details={"booking_id": booking_id},
        )
    if booking.cash_payment_status != CashPaymentStatus.PENDING.value:
        raise InvalidStateError(
            f"Cash leg is {booking.cash_payment_status}, not pending",
            details={"booking_id": booking_id},
        )

    now = utcnow()
    changes = {
        "cash_payment_status": CashPaymentStatus.COLLECTED.value,
        "cash_collected_at": now,
        "cash_collected_by": collected_by,
        "cash_collected_by_model": collected_by_model.value,
    }
    changes["payment_status"] = overall_status_after(booking, **changes).value
    if changes["payment_status"] == PaymentStatus.COMPLETED.value:
        changes["payment_completed_at"] = now

    record = booking.cancellation
    booking = await compare_and_swap(db, booking, expected_version, **changes)
    _reflect_in_refund(booking, record, to_money(booking.cash_amount), PaymentLeg.CASH)
    db.add(PaymentLedgerEntry(
        booking_id=booking_id,
        kind=LedgerEntryKind.CASH_COLLECTED.value,
        leg=PaymentLeg.CASH.value,
        amount=to_money(booking.cash_amount),
        applied=True,
        idempotency_key=idempotency_key,
        recorded_by=collected_by,
        recorded_by_model=collected_by_model.value,
    ))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        booking = await _replayed(db, booking_id, idempotency_key)
        if booking is None:
            raise
        record_cash_collection(replayed=True)
        return booking, True

    record_cash_collection(replayed=False)
    logger.info(
        "cash_collected",
        booking_id=booking_id,
        collected_by=collected_by,
        collected_by_model=collected_by_model.value,
        amount=str(booking.cash_amount),
        payment_status=changes["payment_status"],
    )
    return await get_booking(db, booking_id), False


@retry_on_store_errors
async def settle_cash_payment(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    collected_by: str,
    collected_by_model: ActorModel,
    expected_version: int,
) -> Booking:
    """Settle the single leg of a full cash booking."""
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    _ensure_collector(booking, actor, collected_by, collected_by_model)
    if booking.is_partial_payment or booking.payment_method != PaymentMethod.CASH.value:
        raise InvalidStateError(
            "Only full cash bookings can be settled this way",
            details={"booking_id": booking_id},
        )
    if booking.payment_status != PaymentStatus.PENDING.value:
        raise InvalidStateError(
            f"Payment is {booking.payment_status}, not pending",
            details={"booking_id": booking_id},
        )

    record = booking.cancellation
    booking = await compare_and_swap(
        db, booking, expected_version,
        payment_status=PaymentStatus.COMPLETED.value,
        payment_completed_at=utcnow(),
    )
    _reflect_in_refund(booking, record, to_money(booking.total_amount), PaymentLeg.FULL)
    db.add(PaymentLedgerEntry(
        booking_id=booking_id,
        kind=LedgerEntryKind.CASH_COLLECTED.value,
        leg=PaymentLeg.FULL.value,
        amount=to_money(booking.total_amount),
        recorded_by=collected_by,
        recorded_by_model=collected_by_model.value,
    ))
    await db.flush()

    record_cash_collection(replayed=False)
    logger.info("cash_payment_settled", booking_id=booking_id, collected_by=collected_by)
    return await get_booking(db, booking_id)


@retry_on_store_errors
async def record_payment_intent(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    expected_version: int,
    method: PaymentMethod,
    amount: Decimal,
    is_partial: bool,
    split: Optional[Split] = None,
) -> Booking:
    """
    Replace the booking's payment plan before anything has been paid.

    Raises:
        AmountMismatchError: amount differs from the total, or the split does not sum to it
        InvalidStateError: a leg already settled, booking terminal, or category has no split support
    """
    booking = await get_booking(db, booking_id)
    ensure_version(booking, expected_version)
    if actor.model == ActorModel.DRIVER:
        raise ForbiddenError("Drivers may not change a booking's payment plan")
    ensure_participant(booking, actor)

    if BookingStatus(booking.status) in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Booking is {booking.status}; payment plan is closed",
            details={"booking_id": booking_id},
        )
    if any_leg_settled(booking):
        raise InvalidStateError(
            "A payment leg has already settled",
            details={"booking_id": booking_id},
        )

    total = to_money(booking.total_amount)
    if to_money(amount) != total:
        raise AmountMismatchError(
            "Payment amount must equal the quoted total",
            details={"amount": str(to_money(amount)), "total": str(total)},
        )
    category = VehicleCategory(booking.vehicle_category)
    if is_partial:
        resolved = resolve_split(category, total, method, True, split)
    elif split is not None:
        raise AmountMismatchError("A split was supplied for a non-partial payment")
    else:
        resolved = None

    booking = await compare_and_swap(
        db, booking, expected_version,
        payment_method=method.value,
        payment_status=PaymentStatus.PENDING.value,
        payment_transaction_id=None,
        **split_columns(resolved),
    )
    db.add(PaymentLedgerEntry(
        booking_id=booking_id,
        kind=LedgerEntryKind.INTENT.value,
        leg=PaymentLeg.FULL.value,
        amount=total,
        recorded_by=actor.id,
        recorded_by_model=actor.model.value,
    ))
    await db.flush()

    logger.info(
        "payment_intent_recorded",
        booking_id=booking_id,
        method=method.value,
        is_partial=resolved is not None,
        online=str(resolved.online) if resolved else None,
        cash=str(resolved.cash) if resolved else None,
    )
    return await get_booking(db, booking_id)


async def list_ledger_entries(db: AsyncSession, booking_id: int) -> list[PaymentLedgerEntry]:
    result = await db.execute(
        select(PaymentLedgerEntry)
        .where(PaymentLedgerEntry.booking_id == booking_id)
        .order_by(PaymentLedgerEntry.id.asc())
    )
    return list(result.scalars().all())


def ledger_balance(entries: list[PaymentLedgerEntry]) -> Decimal:
    """Applied settlements minus completed refunds."""
    balance = Decimal("0.00")
    for entry in entries:
        if not entry.applied:
            continue
        if entry.kind == LedgerEntryKind.CASH_COLLECTED.value:
            balance += to_money(entry.amount)
        elif (
            entry.kind == LedgerEntryKind.GATEWAY_CONFIRMATION.value
            and entry.outcome == GatewayOutcome.COMPLETED.value
        ):
            balance += to_money(entry.amount)
        elif entry.kind == LedgerEntryKind.REFUND_COMPLETED.value:
            balance -= to_money(entry.amount)
    return balance
