"""Payment facts extracted from a completed checkout."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class PaymentContext:
    # Payment-intent id; doubles as the enrollment idempotency key
    payment_reference: str
    amount_charged: int
    paid_at: datetime
    email: str
    class_public_id: str
    full_name: str | None = None
    customer_id: str | None = None
    checkout_session_id: str | None = None
