"""
Database models for the billing engine.

The models are organized by functionality:
- Parties and catalog: Student, CourseClass
- Billing: Enrollment, Transaction, InvoiceCounter, PayoutChargeReference
- Delivery bookkeeping: IdempotencyRecord, WebhookEvent, NotificationLog
"""

from .course_class import CourseClass, ProductType
from .enrollment import Enrollment, EnrollmentStatus
from .idempotency_record import IdempotencyKind, IdempotencyRecord
from .invoice_counter import InvoiceCounter
from .notification_log import NotificationLog
from .payout_charge_reference import PayoutChargeReference
from .student import Student
from .transaction import Transaction, TransactionStatus, TransactionType
from .webhook_event import WebhookEvent, WebhookEventStatus

__all__ = [
    "CourseClass",
    "Enrollment",
    "EnrollmentStatus",
    "IdempotencyKind",
    "IdempotencyRecord",
    "InvoiceCounter",
    "NotificationLog",
    "PayoutChargeReference",
    "ProductType",
    "Student",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "WebhookEvent",
    "WebhookEventStatus",
]
