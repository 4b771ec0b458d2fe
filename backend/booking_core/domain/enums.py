"""
Status vocabularies shared by models, schemas and services.

All enums subclass ``str`` so values round-trip through the database and JSON
without conversion.
"""

from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    CANCELLATION_REQUESTED = "cancellation_requested"


TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})


class PaymentMethod(str, Enum):
    CASH = "cash"
    UPI = "upi"
    NETBANKING = "netbanking"
    CARD = "card"
    RAZORPAY = "razorpay"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CashPaymentStatus(str, Enum):
    PENDING = "pending"
    COLLECTED = "collected"
    NOT_COLLECTED = "not_collected"


class ActorModel(str, Enum):
    USER = "User"
    DRIVER = "Driver"
    ADMIN = "Admin"


class CancellationRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DIRECT = "direct"


# Resolved requests that carry a refund
REFUNDABLE_REQUESTS = frozenset({CancellationRequestStatus.APPROVED.value, CancellationRequestStatus.DIRECT.value})


class RefundStatus(str, Enum):
    PENDING = "pending"
    INITIATED = "initiated"
    PROCESSED = "processed"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _REFUND_ORDER.index(self)


_REFUND_ORDER = [
    RefundStatus.PENDING,
    RefundStatus.INITIATED,
    RefundStatus.PROCESSED,
    RefundStatus.COMPLETED,
]


class RefundMethod(str, Enum):
    GATEWAY = "gateway"
    MANUAL = "manual"


class GatewayOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentLeg(str, Enum):
    FULL = "full"
    ONLINE = "online"
    CASH = "cash"


class LedgerEntryKind(str, Enum):
    INTENT = "intent"
    GATEWAY_CONFIRMATION = "gateway_confirmation"
    CASH_COLLECTED = "cash_collected"
    REFUND_INITIATED = "refund_initiated"
    REFUND_COMPLETED = "refund_completed"


class TripType(str, Enum):
    ONE_WAY = "one-way"
    RETURN = "return"
