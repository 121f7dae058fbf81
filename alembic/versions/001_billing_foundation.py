# alembic/versions/001_billing_foundation.py
"""Billing foundation - students, classes, enrollments, transactions, ledgers

Revision ID: 001_billing_foundation
Revises:
Create Date: 2026-09-14 00:00:00.000000

Creates the billing records together with the idempotency ledger, the
invoice counter, the payout charge index, the webhook ledger and the
notification log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_billing_foundation"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("billing_customer_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("email", name="uq_students_email"),
    )

    op.create_table(
        "course_classes",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("class_id", sa.String(64), nullable=False),
        sa.Column("class_name", sa.String(255), nullable=True),
        sa.Column("course_code", sa.String(64), nullable=True),
        sa.Column("product_type", sa.String(20), nullable=True),
        sa.Column("registration_fee", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("class_start_date", sa.Date(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_course_classes_class_id", "course_classes", ["class_id"], unique=True)

    op.create_table(
        "enrollments",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("class_id", sa.String(26), sa.ForeignKey("course_classes.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="registered"),
        *_timestamps(),
        sa.UniqueConstraint("student_id", "class_id", name="uq_enrollments_student_class"),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])
    op.create_index("ix_enrollments_class_id", "enrollments", ["class_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("enrollment_id", sa.String(26), sa.ForeignKey("enrollments.id"), nullable=False),
        sa.Column("class_id", sa.String(26), sa.ForeignKey("course_classes.id"), nullable=False),
        sa.Column("student_id", sa.String(26), sa.ForeignKey("students.id"), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Numeric(6, 2), nullable=False, server_default="1"),
        sa.Column("amount_due", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("invoice_number", sa.Integer(), nullable=False),
        sa.Column("payout_id", sa.String(255), nullable=True),
        sa.Column("payout_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reconciliation_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("payment_reference", name="uq_transactions_payment_reference"),
        sa.UniqueConstraint("invoice_number", name="uq_transactions_invoice_number"),
    )
    op.create_index("ix_transactions_payout_id", "transactions", ["payout_id"])
    op.create_index("ix_transactions_enrollment_id", "transactions", ["enrollment_id"])

    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("reference", sa.String(255), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("outcome", _JSON, nullable=True),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("reference", name="uq_idempotency_records_reference"),
    )

    op.create_table(
        "invoice_counters",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("last_value", sa.BigInteger(), nullable=False),
    )

    op.create_table(
        "payout_charge_references",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("payout_id", sa.String(255), nullable=True),
        sa.Column("payment_reference", sa.String(255), nullable=False),
        sa.Column("payout_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("payment_reference", name="uq_payout_charge_references_reference"),
    )
    op.create_index(
        "ix_payout_charge_references_payout_id", "payout_charge_references", ["payout_id"]
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("payload", _JSON, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("replay_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("recipient_email", sa.String(320), nullable=False),
        sa.Column("recipient_name", sa.String(255), nullable=True),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("enrollment_id", sa.String(26), nullable=True),
        sa.Column("student_id", sa.String(26), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_notification_logs_category", "notification_logs", ["category"])
    op.create_index("ix_notification_logs_enrollment_id", "notification_logs", ["enrollment_id"])
    op.create_index("ix_notification_logs_student_id", "notification_logs", ["student_id"])


def downgrade() -> None:
    op.drop_table("notification_logs")
    op.drop_table("webhook_events")
    op.drop_table("payout_charge_references")
    op.drop_table("invoice_counters")
    op.drop_table("idempotency_records")
    op.drop_table("transactions")
    op.drop_table("enrollments")
    op.drop_table("course_classes")
    op.drop_table("students")
