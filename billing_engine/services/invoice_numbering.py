"""Sequential invoice numbering backed by a single counter row."""

from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import PersistenceError, ValidationException
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.invoice_counter_repository import InvoiceCounterRepository
from .base import BaseService

INVOICE_COUNTER = "invoice"


class InvoiceNumberingService(BaseService):
    """
    Issues unique, strictly increasing invoice numbers.

    Numbers come from one atomic increment of the counter row, so concurrent
    callers never share a range, and the row lock held until commit keeps a
    second schedule generation from interleaving with the first. Numbers of
    a rolled-back transaction may be skipped; gaps are acceptable.
    """

    def __init__(self, db: Session, floor: Optional[int] = None) -> None:
        super().__init__(db)
        self.repository = InvoiceCounterRepository(db)
        self.floor = floor if floor is not None else settings.invoice_number_floor

    def next(self) -> int:
        return self.next_n(1)[0]

    @BaseService.measure_operation("next_n")
    def next_n(self, count: int) -> list[int]:
        """Reserve a contiguous block of ``count`` invoice numbers."""
        if count < 1:
            raise ValidationException(
                "At least one invoice number must be requested",
                code="INVALID_INVOICE_BLOCK",
                details={"count": count},
            )

        last = self.repository.advance(INVOICE_COUNTER, count)
        if last is None:
            self._seed_counter()
            last = self.repository.advance(INVOICE_COUNTER, count)
            if last is None:
                raise PersistenceError("Invoice counter row is missing after seeding")

        first = last - count + 1
        prometheus_metrics.record_invoice_numbers(count)
        self.logger.debug("Issued invoice numbers %s-%s", first, last)
        return list(range(first, last + 1))

    def _seed_counter(self) -> None:
        """Start after the highest stored invoice number, or just below the floor."""
        existing_max = self.repository.max_issued_invoice_number()
        start = max(int(existing_max or 0), self.floor - 1)
        if self.repository.seed(INVOICE_COUNTER, start):
            self.logger.info("Seeded invoice counter at %s", start)
