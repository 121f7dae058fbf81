"""Value returned by webhook business handlers."""

from dataclasses import dataclass, field
from typing import Any, Optional

from ..integrations.invoicing import InvoiceRequest
from .notification_service import NotificationRequest


@dataclass
class HandlerResult:
    # JSON-safe summary, also stored in the idempotency ledger
    outcome: dict[str, Any]
    idempotency_key: Optional[str] = None
    notification: Optional[NotificationRequest] = None
    invoices: list[InvoiceRequest] = field(default_factory=list)
