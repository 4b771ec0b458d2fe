"""
Booking aggregate root.

Key design decisions:
- `version` is the optimistic-concurrency counter; every mutation goes through a
  compare-and-swap UPDATE on it (see services/booking_store.py)
- Pricing columns are a snapshot written once at creation and never recomputed
- Payment legs are embedded columns: the booking owns them outright
- CHECK constraint enforces the split invariant at the DB level
"""

import random
import string
import time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from booking_core.db.base import Base, TimestampMixin


def generate_booking_number() -> str:
    timestamp = str(int(time.time() * 1000))[-8:]
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"CS{timestamp}{suffix}"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(20), nullable=False, unique=True, default=generate_booking_number)
    user_id = Column(String(64), nullable=False, index=True)
    driver_id = Column(String(64), nullable=False, index=True)
    vehicle_category = Column(String(10), nullable=False)
    passengers = Column(Integer, nullable=False, default=1)

    status = Column(String(30), nullable=False, default="pending")
    version = Column(Integer, nullable=False, default=1)

    # Pricing snapshot
    rate_per_km = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    trip_type = Column(String(10), nullable=False, default="one-way")
    distance = Column(Numeric(10, 2), nullable=False)

    # Payment state
    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_transaction_id = Column(String(100), nullable=True)
    payment_completed_at = Column(DateTime(timezone=True), nullable=True)
    is_partial_payment = Column(Boolean, nullable=False, default=False)
    online_amount = Column(Numeric(12, 2), nullable=True)
    cash_amount = Column(Numeric(12, 2), nullable=True)
    online_payment_status = Column(String(20), nullable=True)
    cash_payment_status = Column(String(20), nullable=True)
    online_payment_id = Column(String(100), nullable=True)
    cash_collected_at = Column(DateTime(timezone=True), nullable=True)
    cash_collected_by = Column(String(64), nullable=True)
    cash_collected_by_model = Column(String(10), nullable=True)

    cancellations = relationship(
        "Cancellation",
        back_populates="booking",
        order_by="Cancellation.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'started', 'completed', 'cancelled', "
            "'cancellation_requested')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')",
            name="check_booking_payment_status",
        ),
        CheckConstraint("total_amount > 0", name="check_booking_total_positive"),
        CheckConstraint("version >= 1", name="check_booking_version_positive"),
        CheckConstraint(
            "NOT is_partial_payment OR online_amount + cash_amount = total_amount",
            name="check_booking_split_sum",
        ),
        # Listing projection filters by status/payment status ordered by creation
        Index("ix_bookings_status_created", "status", "created_at"),
        Index("ix_bookings_payment_status", "payment_status"),
    )

    @property
    def cancellation(self):
        """The most recent cancellation record, if any request was ever made."""
        return self.cancellations[-1] if self.cancellations else None

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, number={self.booking_number}, status={self.status}, v={self.version})>"
