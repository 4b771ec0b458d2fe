"""
Append-only status history: one row per booking status transition.

There is no update path for these rows anywhere in the codebase; ordering by
the autoincrement id reproduces the booking's history oldest first.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from booking_core.db.base import Base, utcnow


class StatusHistoryEntry(Base):
    __tablename__ = "booking_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    status = Column(String(30), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_by = Column(String(64), nullable=False)
    updated_by_model = Column(String(10), nullable=False)
    reason = Column(String(500), nullable=True)
    notes = Column(String(1000), nullable=True)

    __table_args__ = (
        Index("ix_status_history_booking_id", "booking_id", "id"),
    )

    def __repr__(self) -> str:
        return f"<StatusHistoryEntry(booking={self.booking_id}, status={self.status}, by={self.updated_by_model})>"
