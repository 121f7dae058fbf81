# billing_engine/services/notification_service.py
"""
Enrollment notifications.

Renders the confirmation emails and delivers them with a bounded retry
policy. Delivery never raises to the caller: every outcome comes back as a
NotificationResult and is written to the notification log. Billing state is
committed before anything here runs.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
import re
import time
from typing import Any, Callable, Optional

from jinja2 import Environment, FileSystemLoader
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.deadline import ProcessingDeadline
from ..core.exceptions import PersistenceError
from ..integrations.email_sender import EmailSender, ResendEmailSender
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.notification_log_repository import NotificationLogRepository
from .base import BaseService

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRANSIENT_MESSAGE_HINTS = ("timeout", "timed out", "network", "rate limit", "temporarily")


class NotificationCategory(str, Enum):
    COURSE_ENROLLMENT = "course_enrollment"
    PROGRAM_ENROLLMENT = "program_enrollment"


class NotificationValidationError(ValueError):
    """The message itself is invalid; retrying cannot fix it."""


@dataclass(frozen=True)
class NotificationRequest:
    recipient: str
    category: NotificationCategory
    template_data: dict[str, Any]
    recipient_name: Optional[str] = None
    enrollment_id: Optional[str] = None
    student_id: Optional[str] = None


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    attempts: int
    message_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class _RenderedEmail:
    subject: str
    html: str
    text: str = field(default="")


def _status_code(exc: Exception) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def is_transient_error(exc: Exception) -> bool:
    """
    Network, timeout, 5xx and rate-limit failures are worth retrying;
    validation failures and other client errors are not.
    """
    if isinstance(exc, NotificationValidationError):
        return False
    # Builtin and requests connection/timeout errors all derive from OSError
    if isinstance(exc, (OSError, TimeoutError)):
        return True
    status_code = _status_code(exc)
    if status_code is not None:
        return status_code == 429 or 500 <= status_code < 600
    if "RateLimit" in type(exc).__name__:
        return True
    message = str(exc).lower()
    return any(hint in message for hint in _TRANSIENT_MESSAGE_HINTS)


def format_currency(amount_minor: Optional[int]) -> str:
    value = Decimal(amount_minor or 0) / Decimal(100)
    return f"${value:,.2f}"


def format_date(value: Optional[date | datetime | str]) -> str:
    if not value:
        return "TBD"
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return f"{value:%B} {value.day}, {value.year}"


def _html_to_text(html: str) -> str:
    text = re.sub(r"<(br|/p|/tr|/h\d)\s*/?>", "\n", html, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


def build_template_environment() -> Environment:
    env = Environment(loader=FileSystemLoader(str(TEMPLATE_DIR)), autoescape=True)
    env.filters["currency"] = format_currency
    env.filters["long_date"] = format_date
    return env


class NotificationService(BaseService):
    def __init__(
        self,
        db: Session,
        sender: Optional[EmailSender] = None,
        *,
        enabled: Optional[bool] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(db)
        self.enabled = settings.email_enabled if enabled is None else enabled
        if sender is None and self.enabled:
            sender = ResendEmailSender()
        self.sender = sender
        self.max_retries = (
            settings.notification_max_retries if max_retries is None else max_retries
        )
        self.backoff_base_seconds = (
            settings.notification_backoff_base_seconds
            if backoff_base_seconds is None
            else backoff_base_seconds
        )
        self._sleep = sleep
        self.templates = build_template_environment()
        self.logs = NotificationLogRepository(db)

    def render(self, request: NotificationRequest) -> _RenderedEmail:
        data = request.template_data
        if request.category is NotificationCategory.PROGRAM_ENROLLMENT:
            subject = f"Welcome to {data.get('class_name') or 'your program'}"
        else:
            subject = f"Enrollment confirmed: {data.get('class_name') or 'your course'}"
        template = self.templates.get_template(f"{request.category.value}.html")
        html = template.render(**data)
        return _RenderedEmail(subject=subject, html=html, text=_html_to_text(html))

    @BaseService.measure_operation("dispatch")
    def dispatch(
        self, request: NotificationRequest, deadline: Optional[ProcessingDeadline] = None
    ) -> NotificationResult:
        """Render, deliver and log one notification. Never raises."""
        if not self.enabled or self.sender is None:
            self.logger.info(
                "Email disabled; not sending %s to %s", request.category.value, request.recipient
            )
            return NotificationResult(success=True, attempts=0, skipped=True)

        try:
            if not request.recipient or not _EMAIL_RE.match(request.recipient):
                raise NotificationValidationError(f"Invalid recipient: {request.recipient!r}")
            email = self.render(request)
            if not email.subject.strip():
                raise NotificationValidationError("Subject is required")
        except NotificationValidationError as exc:
            result = NotificationResult(success=False, attempts=0, error=str(exc))
            self._log_result(request, subject="", result=result)
            return result

        result = self._deliver_with_retry(request, email, deadline)
        self._log_result(request, subject=email.subject, result=result)
        return result

    def _deliver_with_retry(
        self,
        request: NotificationRequest,
        email: _RenderedEmail,
        deadline: Optional[ProcessingDeadline],
    ) -> NotificationResult:
        max_attempts = self.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(max_attempts):
            try:
                message_id = self.sender.send(
                    to=request.recipient,
                    subject=email.subject,
                    html=email.html,
                    text=email.text,
                    reply_to=settings.email_reply_to,
                )
                self.logger.info(
                    "Sent %s email to %s after %s attempt(s)",
                    request.category.value,
                    request.recipient,
                    attempt + 1,
                )
                return NotificationResult(success=True, attempts=attempt + 1, message_id=message_id)
            except Exception as e:
                last_error = e
                if not is_transient_error(e):
                    self.logger.error(
                        f"Non-retryable failure sending {request.category.value} email: {str(e)}"
                    )
                    return NotificationResult(success=False, attempts=attempt + 1, error=str(e))
                if attempt >= max_attempts - 1:
                    break
                wait_time = self.backoff_base_seconds * (2**attempt)
                if deadline is not None and deadline.remaining < wait_time:
                    self.logger.warning(
                        "Abandoning %s email retries: processing budget exhausted",
                        request.category.value,
                    )
                    return NotificationResult(success=False, attempts=attempt + 1, error=str(e))
                self.logger.warning(
                    f"Attempt {attempt + 1}/{max_attempts} failed for {request.category.value} "
                    f"email: {str(e)}. Retrying in {wait_time}s..."
                )
                self._sleep(wait_time)

        self.logger.error(
            f"All {max_attempts} attempts failed for {request.category.value} email: {last_error}"
        )
        return NotificationResult(
            success=False,
            attempts=max_attempts,
            error=f"Failed after {max_attempts} attempts: {last_error}",
        )

    def _log_result(
        self, request: NotificationRequest, *, subject: str, result: NotificationResult
    ) -> None:
        prometheus_metrics.record_notification(
            request.category.value, "success" if result.success else "failure", result.attempts
        )
        try:
            with self.transaction():
                self.logs.create(
                    recipient_email=request.recipient,
                    recipient_name=request.recipient_name,
                    subject=subject or "(not rendered)",
                    category=request.category.value,
                    enrollment_id=request.enrollment_id,
                    student_id=request.student_id,
                    success=result.success,
                    provider_message_id=result.message_id,
                    error=result.error,
                    attempts=result.attempts,
                )
        except PersistenceError as exc:
            # The email outcome is already decided; losing the log row must not surface
            self.logger.warning(f"Could not record notification log: {exc.message}")

    def list_logs(self, **filters: Any):
        return self.logs.list_logs(**filters)

    def delivery_metrics(self) -> dict[str, Any]:
        by_category = self.logs.delivery_counts()
        sent = sum(item["sent"] for item in by_category.values())
        failed = sum(item["failed"] for item in by_category.values())
        total = sent + failed
        return {
            "total_sent": sent,
            "total_failed": failed,
            "success_rate": round(sent / total * 100, 2) if total else 0.0,
            "by_category": by_category,
        }
