"""Per-payment-reference settlement row shared by payouts and enrollments."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base

from ._common import new_ulid, now_utc


class PayoutChargeReference(Base):
    """
    Settlement state of one payment reference.

    Both a payout scan and the creation of the transaction carrying the
    reference write this row, and the unique reference key makes the second
    writer wait for the first. Whichever commits last sees the other's work:
    a payout scan links transactions that are already committed, and a new
    transaction picks up a payout recorded before it. ``payout_id`` stays
    NULL while the reference is known only from its transaction.
    """

    __tablename__ = "payout_charge_references"

    __table_args__ = (
        sa.UniqueConstraint("payment_reference", name="uq_payout_charge_references_reference"),
        sa.Index("ix_payout_charge_references_payout_id", "payout_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    payout_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    payout_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
