"""
Cancellation record owned by a booking.

Rows are never deleted. `refund_status` only moves forward; a rejected request
stays on the booking and a later request creates a new row.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from booking_core.db.base import Base, TimestampMixin


class Cancellation(Base, TimestampMixin):
    __tablename__ = "cancellations"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)

    cancelled_by = Column(String(64), nullable=False)
    cancelled_by_model = Column(String(10), nullable=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    reason = Column(String(500), nullable=False)

    request_status = Column(String(10), nullable=False, default="pending")
    requested_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolved_by_model = Column(String(10), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution_reason = Column(String(500), nullable=True)

    refund_amount = Column(Numeric(12, 2), nullable=False, default=0)
    refund_status = Column(String(10), nullable=False, default="pending")
    refund_method = Column(String(10), nullable=True)
    refund_reference = Column(String(100), nullable=True)
    refund_initiated_at = Column(DateTime(timezone=True), nullable=True)
    refund_completed_at = Column(DateTime(timezone=True), nullable=True)
    refund_notes = Column(String(1000), nullable=True)

    booking = relationship("Booking", back_populates="cancellations")

    __table_args__ = (
        CheckConstraint("refund_amount >= 0", name="check_refund_amount_non_negative"),
        CheckConstraint(
            "refund_status IN ('pending', 'initiated', 'processed', 'completed')",
            name="check_refund_status",
        ),
        CheckConstraint(
            "request_status IN ('pending', 'approved', 'rejected', 'direct')",
            name="check_cancellation_request_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Cancellation(id={self.id}, booking={self.booking_id}, "
            f"request={self.request_status}, refund={self.refund_status})>"
        )
