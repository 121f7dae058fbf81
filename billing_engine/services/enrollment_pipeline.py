"""
Checkout enrollment pipeline.

One parameterized path turns a paid checkout session into a student, an
enrollment and its billing transactions, keyed for idempotency on the
payment-intent id.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.deadline import ProcessingDeadline
from ..core.exceptions import DuplicateEventError, EventValidationError, NotFoundException
from ..integrations.invoicing import InvoiceRequest
from ..integrations.stripe_gateway import BillingCustomerProvider, SettledChargeSource
from ..models.course_class import CourseClass, ProductType
from ..models.enrollment import Enrollment
from ..models.idempotency_record import IdempotencyKind
from ..models.student import Student
from ..models.transaction import Transaction, TransactionStatus, TransactionType
from ..repositories.course_class_repository import CourseClassRepository
from ..repositories.enrollment_repository import EnrollmentRepository
from ..repositories.transaction_repository import TransactionRepository
from .base import BaseService
from .billing_schedule import BillingScheduleGenerator
from .handler_result import HandlerResult
from .idempotency_ledger import IdempotencyLedger
from .notification_service import NotificationCategory, NotificationRequest
from .party_resolver import PartyResolver, normalize_email
from .payment_context import PaymentContext
from .payout_matcher import PayoutMatcher

_TUITION_DESCRIPTIONS = {
    TransactionType.TUITION_A.value: "Tuition installment 1",
    TransactionType.TUITION_B.value: "Tuition installment 2",
}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_payment_context(session: dict[str, Any]) -> Optional[PaymentContext]:
    """
    Pull the payment facts out of a checkout session object.

    Returns None for sessions that are not paid yet (e.g. delayed payment
    methods); those complete through checkout.session.async_payment_succeeded.

    Raises:
        EventValidationError: class id, email or payment reference missing
    """
    if session.get("payment_status") not in (None, "paid", "no_payment_required"):
        return None

    metadata = session.get("metadata") or {}
    customer_details = session.get("customer_details") or {}

    class_public_id = _text(metadata.get("class_id"))
    if not class_public_id:
        raise EventValidationError("Checkout session has no class_id in metadata", field="class_id")

    email = normalize_email(customer_details.get("email") or session.get("customer_email"))
    if not email:
        raise EventValidationError("Checkout session has no customer email", field="email")

    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    payment_reference = _text(payment_intent) or _text(session.get("id"))
    if not payment_reference:
        raise EventValidationError(
            "Checkout session has no payment reference", field="payment_intent"
        )

    customer = session.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    return PaymentContext(
        payment_reference=payment_reference,
        amount_charged=int(session.get("amount_total") or 0),
        # Session creation can precede payment by up to a day; record processing time
        paid_at=datetime.now(timezone.utc),
        email=email,
        class_public_id=class_public_id,
        full_name=_text(metadata.get("full_name")) or _text(customer_details.get("name")),
        customer_id=_text(customer),
        checkout_session_id=_text(session.get("id")),
    )


class EnrollmentPipeline(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        customer_provider: Optional[BillingCustomerProvider] = None,
        charge_source: Optional[SettledChargeSource] = None,
        party_resolver: Optional[PartyResolver] = None,
        schedule_generator: Optional[BillingScheduleGenerator] = None,
        payout_matcher: Optional[PayoutMatcher] = None,
    ) -> None:
        super().__init__(db)
        self.ledger = IdempotencyLedger(db)
        self.classes = CourseClassRepository(db)
        self.enrollments = EnrollmentRepository(db)
        self.transactions = TransactionRepository(db)
        self.party_resolver = party_resolver or PartyResolver(db, customer_provider)
        self.schedule_generator = schedule_generator or BillingScheduleGenerator(db)
        self.payout_matcher = payout_matcher or PayoutMatcher(db, charge_source)

    @BaseService.measure_operation("handle_checkout_completed")
    def handle_checkout_completed(
        self, session: dict[str, Any], deadline: Optional[ProcessingDeadline] = None
    ) -> Optional[HandlerResult]:
        """
        Process a completed checkout inside the caller's transaction.

        Returns None when the session is not paid yet.

        Raises:
            EventValidationError: required checkout fields missing
            DuplicateEventError: the payment reference was already processed
            NotFoundException: the class in the metadata does not exist
        """
        payment = extract_payment_context(session)
        if payment is None:
            self.logger.info(
                "Checkout session %s is not paid yet; nothing to record", session.get("id")
            )
            return None

        reservation = self.ledger.check_and_reserve(
            payment.payment_reference, IdempotencyKind.ENROLLMENT
        )
        if reservation.already_processed:
            raise DuplicateEventError(payment.payment_reference, reservation.prior_outcome or {})

        course_class = self.classes.get_by_public_id(payment.class_public_id)
        if course_class is None:
            raise NotFoundException(
                f"Class {payment.class_public_id} not found",
                code="CLASS_NOT_FOUND",
                details={"class_id": payment.class_public_id},
            )

        student = self.party_resolver.resolve(payment.email, full_name=payment.full_name)
        self.party_resolver.ensure_billing_customer(
            student, payment.email, payment, deadline=deadline
        )

        enrollment, created = self.enrollments.get_or_create(student.id, course_class.id)
        if not created:
            self.logger.info(
                "Student %s already enrolled in %s; reusing enrollment %s",
                student.id,
                course_class.class_id,
                enrollment.id,
            )

        existing = self.transactions.find_by_payment_reference(payment.payment_reference)
        if existing is not None:
            self.logger.warning(
                "Payment %s already has transaction %s; not generating a new schedule",
                payment.payment_reference,
                existing.id,
            )
            transactions = self.transactions.list_for_enrollment(existing.enrollment_id)
        else:
            transactions = self.schedule_generator.generate(
                student, enrollment, course_class, payment
            )

        self.payout_matcher.link_if_settled(transactions)

        outcome = self._build_outcome(payment, student, enrollment, course_class, transactions)
        self.ledger.record_outcome(reservation, outcome)
        self.log_operation(
            "enrollment_recorded",
            payment_reference=payment.payment_reference,
            enrollment_id=enrollment.id,
            transaction_count=len(transactions),
        )

        return HandlerResult(
            outcome=outcome,
            idempotency_key=payment.payment_reference,
            notification=self._build_notification(student, enrollment, course_class, transactions),
            invoices=self._build_invoice_requests(student, course_class, transactions),
        )

    @staticmethod
    def _build_outcome(
        payment: PaymentContext,
        student: Student,
        enrollment: Enrollment,
        course_class: CourseClass,
        transactions: list[Transaction],
    ) -> dict[str, Any]:
        return {
            "payment_reference": payment.payment_reference,
            "student": {
                "id": student.id,
                "email": student.email,
                "full_name": student.full_name,
            },
            "enrollment": {
                "id": enrollment.id,
                "class_id": course_class.class_id,
                "status": enrollment.status,
            },
            "product_type": (course_class.resolved_product_type or ProductType.COURSE).value,
            "transactions": [transaction.to_summary() for transaction in transactions],
        }

    @staticmethod
    def _build_notification(
        student: Student,
        enrollment: Enrollment,
        course_class: CourseClass,
        transactions: list[Transaction],
    ) -> NotificationRequest:
        registration = next(
            (
                t
                for t in transactions
                if t.transaction_type == TransactionType.REGISTRATION_FEE.value
            ),
            transactions[0] if transactions else None,
        )
        is_program = course_class.resolved_product_type is ProductType.PROGRAM
        template_data: dict[str, Any] = {
            "student_name": student.full_name or "Student",
            "class_name": course_class.class_name or ("Program" if is_program else "Course"),
            "course_code": course_class.course_code or "",
            "class_start_date": course_class.class_start_date,
            "amount_paid": registration.amount_paid if registration else 0,
            "invoice_number": registration.invoice_number if registration else None,
            "payment_date": registration.payment_date if registration else None,
        }
        if is_program:
            template_data["outstanding_invoices"] = [
                {
                    "invoice_number": t.invoice_number,
                    "description": _TUITION_DESCRIPTIONS.get(t.transaction_type, "Tuition"),
                    "amount": int(Decimal(t.quantity) * t.amount_due),
                    "due_date": t.due_date,
                }
                for t in transactions
                if t.status == TransactionStatus.PENDING.value
            ]
        return NotificationRequest(
            recipient=student.email,
            recipient_name=student.full_name,
            category=(
                NotificationCategory.PROGRAM_ENROLLMENT
                if is_program
                else NotificationCategory.COURSE_ENROLLMENT
            ),
            template_data=template_data,
            enrollment_id=enrollment.id,
            student_id=student.id,
        )

    @staticmethod
    def _build_invoice_requests(
        student: Student, course_class: CourseClass, transactions: list[Transaction]
    ) -> list[InvoiceRequest]:
        return [
            InvoiceRequest(
                transaction_id=t.id,
                invoice_number=t.invoice_number,
                transaction_type=t.transaction_type,
                amount_due=t.amount_due,
                quantity=float(t.quantity),
                due_date=t.due_date,
                student_email=student.email,
                student_name=student.full_name,
                billing_customer_id=student.billing_customer_id,
                class_name=course_class.class_name,
            )
            for t in transactions
        ]
