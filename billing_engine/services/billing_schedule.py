"""
Billing schedule generation.

A class bills either as a course (one paid registration fee) or as a
program (paid registration fee plus two half-price tuition installments).
The schedule variants below are the single source of truth for the shape
of the transactions an enrollment produces.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
import logging
from typing import ClassVar, Optional, Union

from sqlalchemy.orm import Session

from ..models.course_class import CourseClass, ProductType
from ..models.enrollment import Enrollment
from ..models.student import Student
from ..models.transaction import Transaction, TransactionStatus, TransactionType
from ..repositories.transaction_repository import TransactionRepository
from .base import BaseService
from .invoice_numbering import InvoiceNumberingService
from .payment_context import PaymentContext

logger = logging.getLogger(__name__)

TUITION_A_LEAD_TIME = timedelta(days=21)
TUITION_B_GRACE_PERIOD = timedelta(days=7)
INSTALLMENT_QUANTITY = Decimal("0.5")


@dataclass(frozen=True)
class ScheduleLine:
    """One transaction to be created, before it has an invoice number."""

    transaction_type: TransactionType
    quantity: Decimal
    amount_due: int
    status: TransactionStatus
    due_date: Optional[date] = None
    amount_paid: Optional[int] = None
    payment_date: Optional[datetime] = None
    payment_reference: Optional[str] = None


def _registration_fee_line(registration_fee: int, payment: PaymentContext) -> ScheduleLine:
    return ScheduleLine(
        transaction_type=TransactionType.REGISTRATION_FEE,
        quantity=Decimal("1"),
        amount_due=registration_fee,
        status=TransactionStatus.PAID,
        amount_paid=payment.amount_charged,
        payment_date=payment.paid_at,
        payment_reference=payment.payment_reference,
    )


@dataclass(frozen=True)
class CourseSchedule:
    product_type: ClassVar[ProductType] = ProductType.COURSE

    registration_fee: int

    def lines(self, payment: PaymentContext) -> list[ScheduleLine]:
        return [_registration_fee_line(self.registration_fee, payment)]


@dataclass(frozen=True)
class ProgramSchedule:
    product_type: ClassVar[ProductType] = ProductType.PROGRAM

    registration_fee: int
    price: int
    start_date: Optional[date]

    def lines(self, payment: PaymentContext) -> list[ScheduleLine]:
        tuition_a_due = self.start_date - TUITION_A_LEAD_TIME if self.start_date else None
        tuition_b_due = self.start_date + TUITION_B_GRACE_PERIOD if self.start_date else None
        return [
            _registration_fee_line(self.registration_fee, payment),
            ScheduleLine(
                transaction_type=TransactionType.TUITION_A,
                quantity=INSTALLMENT_QUANTITY,
                amount_due=self.price,
                status=TransactionStatus.PENDING,
                due_date=tuition_a_due,
            ),
            ScheduleLine(
                transaction_type=TransactionType.TUITION_B,
                quantity=INSTALLMENT_QUANTITY,
                amount_due=self.price,
                status=TransactionStatus.PENDING,
                due_date=tuition_b_due,
            ),
        ]


BillingSchedule = Union[CourseSchedule, ProgramSchedule]


def schedule_for(course_class: CourseClass) -> BillingSchedule:
    """
    Pick the schedule variant for a class.

    Classes whose product type is missing or unrecognized bill as a course.
    """
    product_type = course_class.resolved_product_type
    if product_type is ProductType.PROGRAM:
        return ProgramSchedule(
            registration_fee=course_class.registration_fee or 0,
            price=course_class.price or 0,
            start_date=course_class.class_start_date,
        )
    if product_type is None:
        logger.warning(
            "Class %s has unknown product type %r; billing as a single-payment course",
            course_class.class_id,
            course_class.product_type,
        )
    return CourseSchedule(registration_fee=course_class.registration_fee or 0)


class BillingScheduleGenerator(BaseService):
    def __init__(
        self, db: Session, invoice_numbers: Optional[InvoiceNumberingService] = None
    ) -> None:
        super().__init__(db)
        self.invoice_numbers = invoice_numbers or InvoiceNumberingService(db)
        self.repository = TransactionRepository(db)

    @BaseService.measure_operation("generate")
    def generate(
        self,
        student: Student,
        enrollment: Enrollment,
        course_class: CourseClass,
        payment: PaymentContext,
    ) -> list[Transaction]:
        """
        Build and persist the transactions for one paid enrollment.

        One contiguous invoice block is reserved before any row is written and
        handed out in schedule order.
        """
        schedule = schedule_for(course_class)
        lines = schedule.lines(payment)
        invoice_numbers = self.invoice_numbers.next_n(len(lines))

        transactions = [
            Transaction(
                enrollment_id=enrollment.id,
                class_id=course_class.id,
                student_id=student.id,
                transaction_type=line.transaction_type.value,
                quantity=line.quantity,
                amount_due=line.amount_due,
                amount_paid=line.amount_paid,
                status=line.status.value,
                due_date=line.due_date,
                payment_date=line.payment_date,
                payment_reference=line.payment_reference,
                invoice_number=invoice_number,
            )
            for line, invoice_number in zip(lines, invoice_numbers)
        ]
        self.repository.add_all(transactions)
        self.log_operation(
            "schedule_generated",
            enrollment_id=enrollment.id,
            product_type=schedule.product_type.value,
            transaction_count=len(transactions),
        )
        return transactions
