"""External invoicing capability."""

from dataclasses import dataclass
from datetime import date
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceRequest:
    transaction_id: str
    invoice_number: int
    transaction_type: str
    amount_due: int
    quantity: float
    due_date: Optional[date]
    student_email: str
    student_name: Optional[str]
    billing_customer_id: Optional[str]
    class_name: Optional[str]


class InvoicingClient(Protocol):
    def create_invoice(self, request: InvoiceRequest) -> Optional[str]:
        """Create the invoice remotely; returns the remote id when one exists."""
        ...


class LoggingInvoicingClient:
    """Default client: records what would be invoiced without calling anything."""

    def create_invoice(self, request: InvoiceRequest) -> Optional[str]:
        logger.info(
            "Invoice %s queued for %s (%s, %s minor units)",
            request.invoice_number,
            request.student_email,
            request.transaction_type,
            request.amount_due,
        )
        return None
