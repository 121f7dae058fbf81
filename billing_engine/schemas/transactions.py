"""Transaction and payout DTOs for the admin API."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class TransactionResponse(StrictModel):
    id: str
    enrollment_id: str
    class_id: str
    student_id: str
    transaction_type: str
    quantity: float
    amount_due: int
    amount_paid: Optional[int] = None
    status: str
    due_date: Optional[date] = None
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    invoice_number: int
    payout_id: Optional[str] = None
    payout_date: Optional[datetime] = None
    reconciled: bool
    reconciliation_date: Optional[datetime] = None
    payout_state: Literal["unlinked", "linked", "reconciled"]


class TransactionStatusUpdate(StrictRequestModel):
    status: Literal["pending", "paid", "cancelled", "refunded"]


class PayoutGroupResponse(StrictModel):
    payout_id: str
    payout_date: Optional[datetime] = None
    transaction_count: int
    total_amount_paid: int
    reconciled_count: int
    transactions: list[TransactionResponse] = Field(default_factory=list)


class PayoutReconcileResponse(StrictModel):
    payout_id: str
    reconciled_count: int
    transactions: list[TransactionResponse]
