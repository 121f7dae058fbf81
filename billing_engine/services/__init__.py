"""
Service layer for business logic.

Services own transaction boundaries and orchestrate repositories.
"""

from .base import BaseService
from .billing_schedule import BillingScheduleGenerator, CourseSchedule, ProgramSchedule
from .enrollment_pipeline import EnrollmentPipeline
from .idempotency_ledger import IdempotencyLedger
from .invoice_numbering import InvoiceNumberingService
from .notification_service import NotificationService
from .party_resolver import PartyResolver
from .payout_matcher import PayoutMatcher
from .reconciliation_service import ReconciliationService
from .webhook_dispatcher import WebhookDispatcher
from .webhook_ledger_service import WebhookLedgerService

__all__ = [
    "BaseService",
    "BillingScheduleGenerator",
    "CourseSchedule",
    "EnrollmentPipeline",
    "IdempotencyLedger",
    "InvoiceNumberingService",
    "NotificationService",
    "PartyResolver",
    "PayoutMatcher",
    "ProgramSchedule",
    "ReconciliationService",
    "WebhookDispatcher",
    "WebhookLedgerService",
]
