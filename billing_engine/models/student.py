"""Student identity model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base

from ._common import new_ulid, now_utc

if TYPE_CHECKING:
    from .enrollment import Enrollment


class Student(Base):
    """
    A paying student, keyed by normalized email.

    The billing customer reference stays empty until the first payment
    creates (or reuses) a customer at the processor.
    """

    __tablename__ = "students"

    __table_args__ = (sa.UniqueConstraint("email", name="uq_students_email"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    billing_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=now_utc
    )

    enrollments: Mapped[list["Enrollment"]] = relationship(back_populates="student")

    def __repr__(self) -> str:
        return f"<Student {self.id} {self.email}>"
