"""Invoice number counter model."""

from __future__ import annotations

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_engine.database import Base


class InvoiceCounter(Base):
    """Holds the last issued invoice number; advanced with an atomic UPDATE ... RETURNING."""

    __tablename__ = "invoice_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
