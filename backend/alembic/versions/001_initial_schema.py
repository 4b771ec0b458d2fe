"""Initial schema: bookings, cancellations, status history and payment ledger.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Bookings table (aggregate root)
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_number", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("vehicle_category", sa.String(10), nullable=False),
        sa.Column("passengers", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(30), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("rate_per_km", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("trip_type", sa.String(10), nullable=False, server_default=sa.text("'one-way'")),
        sa.Column("distance", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_transaction_id", sa.String(100), nullable=True),
        sa.Column("payment_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_partial_payment", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("online_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("cash_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("online_payment_status", sa.String(20), nullable=True),
        sa.Column("cash_payment_status", sa.String(20), nullable=True),
        sa.Column("online_payment_id", sa.String(100), nullable=True),
        sa.Column("cash_collected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cash_collected_by", sa.String(64), nullable=True),
        sa.Column("cash_collected_by_model", sa.String(10), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("booking_number", name="uq_bookings_booking_number"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'started', 'completed', 'cancelled', "
            "'cancellation_requested')",
            name="check_booking_status",
        ),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'completed', 'failed')",
            name="check_booking_payment_status",
        ),
        sa.CheckConstraint("total_amount > 0", name="check_booking_total_positive"),
        sa.CheckConstraint("version >= 1", name="check_booking_version_positive"),
        # Split invariant enforced by the database as the last line of defence
        sa.CheckConstraint(
            "NOT is_partial_payment OR online_amount + cash_amount = total_amount",
            name="check_booking_split_sum",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_driver_id", "bookings", ["driver_id"])
    # Listing projection: WHERE status = ? ORDER BY created_at DESC
    op.create_index("ix_bookings_status_created", "bookings", ["status", "created_at"])
    op.create_index("ix_bookings_payment_status", "bookings", ["payment_status"])

    # Cancellation records, never deleted
    op.create_table(
        "cancellations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("cancelled_by", sa.String(64), nullable=False),
        sa.Column("cancelled_by_model", sa.String(10), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.String(500), nullable=False),
        sa.Column("request_status", sa.String(10), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(64), nullable=True),
        sa.Column("resolved_by_model", sa.String(10), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_reason", sa.String(500), nullable=True),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("refund_status", sa.String(10), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("refund_method", sa.String(10), nullable=True),
        sa.Column("refund_reference", sa.String(100), nullable=True),
        sa.Column("refund_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_notes", sa.String(1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("refund_amount >= 0", name="check_refund_amount_non_negative"),
        sa.CheckConstraint(
            "refund_status IN ('pending', 'initiated', 'processed', 'completed')",
            name="check_refund_status",
        ),
        sa.CheckConstraint(
            "request_status IN ('pending', 'approved', 'rejected', 'direct')",
            name="check_cancellation_request_status",
        ),
    )
    op.create_index("ix_cancellations_id", "cancellations", ["id"])
    op.create_index("ix_cancellations_booking_id", "cancellations", ["booking_id"])

    # Append-only status history
    op.create_table(
        "booking_status_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_by", sa.String(64), nullable=False),
        sa.Column("updated_by_model", sa.String(10), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
    )
    # Keyset paging over one booking's trail
    op.create_index("ix_status_history_booking_id", "booking_status_history", ["booking_id", "id"])

    # Payment ledger
    op.create_table(
        "payment_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("leg", sa.String(10), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("outcome", sa.String(20), nullable=True),
        sa.Column("applied", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("transaction_id", sa.String(100), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("recorded_by", sa.String(64), nullable=True),
        sa.Column("recorded_by_model", sa.String(10), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        # The idempotency guarantee: one ledger row per key, ever
        sa.UniqueConstraint("idempotency_key", name="uq_ledger_idempotency_key"),
    )
    op.create_index("ix_ledger_booking_id", "payment_ledger_entries", ["booking_id", "id"])


def downgrade() -> None:
    op.drop_table("payment_ledger_entries")
    op.drop_table("booking_status_history")
    op.drop_table("cancellations")
    op.drop_table("bookings")
