"""Billing transaction model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict

import sqlalchemy as sa
from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base

from ._common import new_ulid, now_utc

if TYPE_CHECKING:
    from .enrollment import Enrollment


class TransactionType(str, Enum):
    REGISTRATION_FEE = "registration_fee"
    TUITION_A = "tuition_a"
    TUITION_B = "tuition_b"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Transaction(Base):
    """
    A single billing obligation or receipt tied to an enrollment.

    Created once by schedule generation. Afterwards only payout linking,
    manual reconciliation and admin status overrides touch it.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        sa.UniqueConstraint("payment_reference", name="uq_transactions_payment_reference"),
        sa.UniqueConstraint("invoice_number", name="uq_transactions_invoice_number"),
        sa.Index("ix_transactions_payout_id", "payout_id"),
        sa.Index("ix_transactions_enrollment_id", "enrollment_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    enrollment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("enrollments.id"), nullable=False
    )
    class_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("course_classes.id"), nullable=False
    )
    student_id: Mapped[str] = mapped_column(String(26), ForeignKey("students.id"), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("1"))
    amount_due: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_number: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reconciliation_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=now_utc
    )

    enrollment: Mapped["Enrollment"] = relationship(back_populates="transactions")

    @property
    def payout_state(self) -> str:
        """unlinked -> linked -> reconciled."""
        if self.reconciled:
            return "reconciled"
        if self.payout_id:
            return "linked"
        return "unlinked"

    def to_summary(self) -> Dict[str, Any]:
        """JSON-safe summary stored in idempotency outcomes and returned to callers."""
        return {
            "id": self.id,
            "transaction_type": self.transaction_type,
            "quantity": float(self.quantity),
            "amount_due": self.amount_due,
            "amount_paid": self.amount_paid,
            "status": self.status,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "payment_reference": self.payment_reference,
            "invoice_number": self.invoice_number,
        }
