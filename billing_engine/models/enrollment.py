"""Enrollment model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_engine.database import Base

from ._common import new_ulid, now_utc

if TYPE_CHECKING:
    from .course_class import CourseClass
    from .student import Student
    from .transaction import Transaction


class EnrollmentStatus(str, Enum):
    REGISTERED = "registered"
    WITHDRAWN = "withdrawn"
    COMPLETED = "completed"


class Enrollment(Base):
    """One student enrolled in one class; unique per (student, class)."""

    __tablename__ = "enrollments"

    __table_args__ = (
        sa.UniqueConstraint("student_id", "class_id", name="uq_enrollments_student_class"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    student_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("students.id"), nullable=False, index=True
    )
    class_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("course_classes.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EnrollmentStatus.REGISTERED.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    student: Mapped["Student"] = relationship(back_populates="enrollments")
    course_class: Mapped["CourseClass"] = relationship()
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="enrollment", order_by="Transaction.invoice_number"
    )
