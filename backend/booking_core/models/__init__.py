from booking_core.models.booking import Booking
from booking_core.models.cancellation import Cancellation
from booking_core.models.audit import StatusHistoryEntry
from booking_core.models.ledger import PaymentLedgerEntry

__all__ = ["Booking", "Cancellation", "StatusHistoryEntry", "PaymentLedgerEntry"]
