"""Offered class model (catalog row consumed by billing)."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base

from ._common import new_ulid, now_utc


class ProductType(str, Enum):
    """How a class is billed."""

    COURSE = "course"  # single payment
    PROGRAM = "program"  # registration fee + two tuition installments


class CourseClass(Base):
    """A scheduled offering of a course or program that students enroll in."""

    __tablename__ = "course_classes"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=new_ulid)
    # Public identifier carried in checkout metadata (e.g. "CLS1")
    class_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    class_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    course_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    product_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    registration_fee: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    class_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    @property
    def resolved_product_type(self) -> ProductType | None:
        """Parsed product type, or None when missing or unrecognized."""
        raw = (self.product_type or "").strip().lower()
        try:
            return ProductType(raw)
        except ValueError:
            return None

    def __repr__(self) -> str:
        return f"<CourseClass {self.class_id} ({self.product_type})>"
