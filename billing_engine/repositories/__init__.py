"""
Repository layer for data access.

Repositories wrap SQLAlchemy access per aggregate and never commit.
"""

from .base_repository import BaseRepository
from .course_class_repository import CourseClassRepository
from .enrollment_repository import EnrollmentRepository
from .idempotency_repository import IdempotencyRepository
from .invoice_counter_repository import InvoiceCounterRepository
from .notification_log_repository import NotificationLogRepository
from .payout_charge_reference_repository import PayoutChargeReferenceRepository
from .student_repository import StudentRepository
from .transaction_repository import TransactionRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "BaseRepository",
    "CourseClassRepository",
    "EnrollmentRepository",
    "IdempotencyRepository",
    "InvoiceCounterRepository",
    "NotificationLogRepository",
    "PayoutChargeReferenceRepository",
    "StudentRepository",
    "TransactionRepository",
    "WebhookEventRepository",
]
