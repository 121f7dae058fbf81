"""Idempotency ledger model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base

from ._common import JSONType, new_ulid, now_utc


class IdempotencyKind(str, Enum):
    ENROLLMENT = "enrollment"  # keyed on payment-intent id
    PAYOUT = "payout"  # keyed on payout id


class IdempotencyRecord(Base):
    """
    External reference -> outcome of the first successful processing.

    The row is inserted in the same database transaction as the business
    writes, so a rolled-back handler leaves no reservation behind.
    """

    __tablename__ = "idempotency_records"

    __table_args__ = (sa.UniqueConstraint("reference", name="uq_idempotency_records_reference"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    outcome: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
