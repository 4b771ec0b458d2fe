"""
Payment ledger: every payment intent, settlement and refund step for a booking.

`idempotency_key` is unique across the table. A gateway confirmation or cash
collection that carries a key is recorded in the same transaction as the state
change it causes, so a replayed key can never apply twice.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String

from booking_core.db.base import Base, utcnow


class PaymentLedgerEntry(Base):
    __tablename__ = "payment_ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    kind = Column(String(30), nullable=False)
    leg = Column(String(10), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    outcome = Column(String(20), nullable=True)
    # False when the entry was recorded but did not change any leg
    # (e.g. a late failure report for an already settled leg)
    applied = Column(Boolean, nullable=False, default=True)
    idempotency_key = Column(String(255), nullable=True, unique=True)
    transaction_id = Column(String(100), nullable=True)
    reference = Column(String(100), nullable=True)
    recorded_by = Column(String(64), nullable=True)
    recorded_by_model = Column(String(10), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_ledger_booking_id", "booking_id", "id"),
    )

    def __repr__(self) -> str:
        return f"<PaymentLedgerEntry(booking={self.booking_id}, kind={self.kind}, leg={self.leg}, amount={self.amount})>"
