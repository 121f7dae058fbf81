"""
Tests for enrollment notifications: rendering, retry policy and the delivery log.
"""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy.orm import Session

from billing_engine.core.deadline import ProcessingDeadline
from billing_engine.models.notification_log import NotificationLog
from billing_engine.services.notification_service import (
    NotificationCategory,
    NotificationRequest,
    NotificationService,
    format_currency,
    format_date,
    is_transient_error,
)


class ProviderError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def _course_request(recipient: str = "ada@example.com") -> NotificationRequest:
    return NotificationRequest(
        recipient=recipient,
        recipient_name="Ada Lovelace",
        category=NotificationCategory.COURSE_ENROLLMENT,
        template_data={
            "student_name": "Ada Lovelace",
            "class_name": "Intro to Data Analysis",
            "course_code": "DA101",
            "invoice_number": 100001,
            "amount_paid": 15000,
            "payment_date": datetime(2026, 1, 10, tzinfo=timezone.utc),
            "class_start_date": date(2026, 11, 2),
        },
        enrollment_id="E1",
        student_id="S1",
    )


def _service(db: Session, sender, **kwargs) -> NotificationService:
    sleeps: list[float] = []
    service = NotificationService(
        db,
        sender,
        enabled=True,
        max_retries=kwargs.pop("max_retries", 3),
        backoff_base_seconds=kwargs.pop("backoff_base_seconds", 1.0),
        sleep=sleeps.append,
    )
    service.sleeps = sleeps
    return service


def test_successful_send_is_logged(db: Session, email_sender):
    service = _service(db, email_sender)

    result = service.dispatch(_course_request())

    assert result.success is True
    assert result.attempts == 1
    assert result.message_id == "msg_1"
    sent = email_sender.sent[0]
    assert sent["subject"] == "Enrollment confirmed: Intro to Data Analysis"
    assert "$150.00" in sent["html"]
    assert "100001" in sent["html"]
    log = db.query(NotificationLog).one()
    assert log.success is True
    assert log.attempts == 1
    assert log.category == "course_enrollment"


def test_program_email_lists_outstanding_installments(db: Session, email_sender):
    service = _service(db, email_sender)
    request = NotificationRequest(
        recipient="ada@example.com",
        category=NotificationCategory.PROGRAM_ENROLLMENT,
        template_data={
            "student_name": "Ada",
            "class_name": "Full Stack Engineering Program",
            "amount_paid": 25000,
            "invoice_number": 100001,
            "outstanding_invoices": [
                {
                    "invoice_number": 100002,
                    "description": "Tuition installment 1",
                    "amount": 200000,
                    "due_date": date(2026, 2, 8),
                },
            ],
        },
    )

    service.dispatch(request)

    html = email_sender.sent[0]["html"]
    assert email_sender.sent[0]["subject"] == "Welcome to Full Stack Engineering Program"
    assert "100002" in html
    assert "$2,000.00" in html
    assert "February 8, 2026" in html


def test_transient_failures_are_retried_with_exponential_backoff(db: Session, email_sender):
    email_sender.failures = [TimeoutError("timed out"), ProviderError("upstream", 503)]
    service = _service(db, email_sender)

    result = service.dispatch(_course_request())

    assert result.success is True
    assert result.attempts == 3
    assert service.sleeps == [1.0, 2.0]


def test_permanent_failure_is_not_retried(db: Session, email_sender):
    email_sender.failures = [ProviderError("invalid from address", 422)]
    service = _service(db, email_sender)

    result = service.dispatch(_course_request())

    assert result.success is False
    assert result.attempts == 1
    assert service.sleeps == []
    assert db.query(NotificationLog).one().success is False


def test_gives_up_after_max_retries(db: Session, email_sender):
    email_sender.failures = [ConnectionError("network down")] * 5
    service = _service(db, email_sender, max_retries=2)

    result = service.dispatch(_course_request())

    assert result.success is False
    assert result.attempts == 3
    assert "Failed after 3 attempts" in result.error


def test_retry_stops_when_budget_is_exhausted(db: Session, email_sender):
    email_sender.failures = [TimeoutError("timed out")] * 3
    service = _service(db, email_sender, backoff_base_seconds=60)

    result = service.dispatch(_course_request(), deadline=ProcessingDeadline(budget_seconds=5))

    assert result.success is False
    assert result.attempts == 1
    assert service.sleeps == []


def test_invalid_recipient_fails_without_sending(db: Session, email_sender):
    service = _service(db, email_sender)

    result = service.dispatch(_course_request(recipient="nobody"))

    assert result.success is False
    assert result.attempts == 0
    assert email_sender.sent == []


def test_disabled_email_is_a_successful_noop(db: Session, email_sender):
    service = NotificationService(db, email_sender, enabled=False)

    result = service.dispatch(_course_request())

    assert result.success is True
    assert result.skipped is True
    assert result.attempts == 0
    assert email_sender.sent == []
    assert db.query(NotificationLog).count() == 0


def test_delivery_metrics_by_category(db: Session, email_sender):
    email_sender.failures = [ProviderError("bad", 400)]
    service = _service(db, email_sender)
    service.dispatch(_course_request())
    service.dispatch(_course_request())

    metrics = service.delivery_metrics()

    assert metrics["total_sent"] == 1
    assert metrics["total_failed"] == 1
    assert metrics["success_rate"] == 50.0
    assert metrics["by_category"]["course_enrollment"] == {"sent": 1, "failed": 1}


@pytest.mark.parametrize(
    "exc, transient",
    [
        (TimeoutError("slow"), True),
        (ConnectionError("reset"), True),
        (ProviderError("rate limited", 429), True),
        (ProviderError("server", 500), True),
        (ProviderError("bad request", 400), False),
        (ValueError("Service temporarily unavailable"), True),
        (ValueError("invalid email"), False),
    ],
)
def test_is_transient_error(exc, transient):
    assert is_transient_error(exc) is transient


def test_formatters():
    assert format_currency(123456) == "$1,234.56"
    assert format_currency(None) == "$0.00"
    assert format_date(date(2026, 3, 1)) == "March 1, 2026"
    assert format_date("2026-03-01") == "March 1, 2026"
    assert format_date(None) == "TBD"
