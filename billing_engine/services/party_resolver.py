"""Maps payer emails to Student records and billing customers."""

from typing import Optional

from sqlalchemy.orm import Session

from ..core.deadline import ProcessingDeadline
from ..core.exceptions import DownstreamUnavailable, EventValidationError, PersistenceError
from ..integrations.stripe_gateway import BillingCustomerProvider
from ..models.student import Student
from ..repositories.student_repository import StudentRepository
from .base import BaseService
from .payment_context import PaymentContext


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class PartyResolver(BaseService):
    def __init__(
        self, db: Session, customer_provider: Optional[BillingCustomerProvider] = None
    ) -> None:
        super().__init__(db)
        self.repository = StudentRepository(db)
        self.customer_provider = customer_provider

    @BaseService.measure_operation("resolve")
    def resolve(self, email: str, full_name: Optional[str] = None) -> Student:
        """
        Return the Student for ``email``, creating it when absent.

        Concurrent callers converge on one row: a conflicting insert is
        skipped and the lookup is retried.
        """
        normalized = normalize_email(email)
        if not normalized or "@" not in normalized:
            raise EventValidationError("A valid customer email is required", field="email")

        name = (full_name or "").strip() or None
        student = self.repository.get_by_email(normalized)
        if student is None:
            if self.repository.insert_if_absent(normalized, name):
                self.logger.info("Created student for %s", normalized)
            student = self.repository.get_by_email(normalized)
            if student is None:
                raise PersistenceError(f"Student {normalized} could not be read back")

        if name and not student.full_name:
            student.full_name = name
            self.repository.flush()
        return student

    def ensure_billing_customer(
        self,
        student: Student,
        email: str,
        payment_context: Optional[PaymentContext] = None,
        deadline: Optional[ProcessingDeadline] = None,
    ) -> None:
        """
        Make sure the student carries a billing-customer reference.

        Reuses the customer attached to the payment when there is one. A failed
        or skipped creation is logged and left for the next payment.
        """
        if student.billing_customer_id:
            return

        if payment_context is not None and payment_context.customer_id:
            student.billing_customer_id = payment_context.customer_id
            self.repository.flush()
            return

        if self.customer_provider is None:
            self.logger.debug("No billing customer provider configured; skipping")
            return

        if deadline is not None and deadline.expired:
            self.logger.warning(
                "Skipping billing customer creation for student %s: processing budget exhausted",
                student.id,
            )
            return

        normalized = normalize_email(email) or student.email
        try:
            customer_id = self.customer_provider.create_customer(
                email=normalized,
                name=student.full_name,
                metadata={"student_id": student.id},
                idempotency_key=f"billing-customer:{normalized}",
            )
        except DownstreamUnavailable as exc:
            self.logger.warning(
                "Billing customer creation failed for student %s: %s",
                student.id,
                exc.message,
                extra={"student_id": student.id, "system": exc.system},
            )
            return

        student.billing_customer_id = customer_id
        self.repository.flush()
        self.log_operation("billing_customer_created", student_id=student.id)
