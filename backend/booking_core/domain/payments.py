"""
Pure payment-state rules: money rounding, leg enumeration, derived status.

Nothing here touches the database; the ledger service applies the results.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from types import SimpleNamespace

from booking_core.domain.enums import CashPaymentStatus, PaymentLeg, PaymentStatus

MINOR_UNIT = Decimal("0.01")
SETTLED_STATES = frozenset({PaymentStatus.COMPLETED.value, CashPaymentStatus.COLLECTED.value})


def to_money(value) -> Decimal:
    """Quantize to currency minor units."""
    return Decimal(str(value)).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def default_split(total: Decimal, online_share: Decimal) -> tuple[Decimal, Decimal]:
    """Online portion rounded to whole units; cash takes the exact remainder."""
    total = to_money(total)
    online = (total * online_share).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    online = to_money(online)
    return online, total - online


@dataclass(frozen=True)
class LegState:
    leg: PaymentLeg
    amount: Decimal
    status: str

    @property
    def settled(self) -> bool:
        return self.status in SETTLED_STATES


def payment_legs(booking) -> list[LegState]:
    if booking.is_partial_payment:
        return [
            LegState(PaymentLeg.ONLINE, to_money(booking.online_amount), booking.online_payment_status),
            LegState(PaymentLeg.CASH, to_money(booking.cash_amount), booking.cash_payment_status),
        ]
    return [LegState(PaymentLeg.FULL, to_money(booking.total_amount), booking.payment_status)]


def overall_payment_status(booking) -> PaymentStatus:
    """
    completed iff every leg is completed/collected; failed iff some leg is
    failed (a successful retry overwrites the leg, clearing the failure);
    pending otherwise.
    """
    legs = payment_legs(booking)
    if all(leg.settled for leg in legs):
        return PaymentStatus.COMPLETED
    if any(leg.status == PaymentStatus.FAILED.value for leg in legs):
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def settled_amount(booking) -> Decimal:
    return sum((leg.amount for leg in payment_legs(booking) if leg.settled), Decimal("0.00"))


def any_leg_settled(booking) -> bool:
    return any(leg.settled for leg in payment_legs(booking))


def gateway_leg(booking) -> PaymentLeg:
    """The leg a gateway confirmation settles: the online portion of a split, else the full leg."""
    if booking.is_partial_payment:
        return PaymentLeg.ONLINE
    return PaymentLeg.FULL


def overall_status_after(booking, **changes) -> PaymentStatus:
    """Derived overall status the booking would have once `changes` are written."""
    fields = {
        name: getattr(booking, name)
        for name in (
            "is_partial_payment", "online_amount", "cash_amount", "total_amount",
            "payment_status", "online_payment_status", "cash_payment_status",
        )
    }
    fields.update(changes)
    return overall_payment_status(SimpleNamespace(**fields))
