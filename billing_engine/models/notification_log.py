"""Notification delivery log model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base

from ._common import new_ulid, now_utc


class NotificationLog(Base):
    """Outcome of one notification send, including every retry it took."""

    __tablename__ = "notification_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    enrollment_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    student_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
