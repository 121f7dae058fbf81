# billing_engine/services/webhook_dispatcher.py
"""
Stripe webhook dispatcher.

Verifies the signature over the raw request bytes, logs the event in the
webhook ledger and routes it through a fixed type -> handler table. Malformed
or unauthenticated requests are rejected; every authenticated event is
acknowledged unless storage failed or a payout scan aborted, in which case
the error propagates so the processor retries.
"""

from dataclasses import dataclass, field
import json
import time
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.deadline import ProcessingDeadline
from ..core.exceptions import (
    AuthenticationError,
    DomainException,
    DownstreamUnavailable,
    DuplicateEventError,
    EventInFlightError,
    EventValidationError,
    PersistenceError,
    ProcessingDeferred,
    ReconciliationAbort,
)
from ..integrations.invoicing import InvoicingClient, LoggingInvoicingClient
from ..integrations.stripe_gateway import (
    BillingCustomerProvider,
    SettledChargeSource,
    WebhookVerifier,
)
from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService
from .enrollment_pipeline import EnrollmentPipeline
from .handler_result import HandlerResult
from .notification_service import NotificationService
from .payout_matcher import PayoutMatcher
from .webhook_ledger_service import WebhookLedgerService

STRIPE_SOURCE = "stripe"
CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
PAYOUT_PAID = "payout.paid"

Handler = Callable[[dict[str, Any], ProcessingDeadline], Optional[HandlerResult]]


@dataclass
class WebhookResult:
    status: str
    body: dict[str, Any]
    replayed: bool = False
    headers: dict[str, str] = field(default_factory=dict)


def _ack(event_type: str, status: str, **extra: Any) -> dict[str, Any]:
    return {"received": True, "event_type": event_type, "status": status, **extra}


class WebhookDispatcher(BaseService):
    def __init__(
        self,
        db: Session,
        *,
        verifier: WebhookVerifier,
        charge_source: Optional[SettledChargeSource] = None,
        customer_provider: Optional[BillingCustomerProvider] = None,
        notifications: Optional[NotificationService] = None,
        invoicing: Optional[InvoicingClient] = None,
        budget_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(db)
        self.verifier = verifier
        self.ledger = WebhookLedgerService(db)
        self.payout_matcher = PayoutMatcher(db, charge_source)
        self.enrollment_pipeline = EnrollmentPipeline(
            db, customer_provider=customer_provider, payout_matcher=self.payout_matcher
        )
        self.notifications = notifications
        self.invoicing = invoicing or LoggingInvoicingClient()
        self.budget_seconds = budget_seconds or settings.webhook_processing_budget_seconds
        self._handlers: dict[str, Handler] = {
            CHECKOUT_COMPLETED: self.enrollment_pipeline.handle_checkout_completed,
            CHECKOUT_ASYNC_PAYMENT_SUCCEEDED: self.enrollment_pipeline.handle_checkout_completed,
            PAYOUT_PAID: self.payout_matcher.handle_payout_paid,
        }

    def parse_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        """
        Authenticate and decode the raw request body.

        Raises:
            AuthenticationError: missing or invalid signature
            EventValidationError: body is not a JSON event with id and type
        """
        if not signature:
            raise AuthenticationError("Missing Stripe-Signature header")
        self.verifier.verify(payload, signature)

        try:
            event = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as exc:
            raise EventValidationError(f"Malformed webhook payload: {exc}") from exc
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise EventValidationError("Webhook payload has no event id or type")
        return event

    @BaseService.measure_operation("handle")
    def handle(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        event = self.parse_event(payload, signature)
        with self.transaction():
            ledger_row = self.ledger.log_received(source=STRIPE_SOURCE, event=event)
        return self.process(event, ledger_row)

    @BaseService.measure_operation("replay")
    def replay(self, webhook_event_id: str) -> WebhookResult:
        """Re-run business processing for a stored event (admin follow-up)."""
        with self.transaction():
            ledger_row = self.ledger.get_event(webhook_event_id)
            self.ledger.mark_replayed(ledger_row)
        self.logger.info("Replaying webhook %s (%s)", ledger_row.event_id, ledger_row.event_type)
        return self.process(dict(ledger_row.payload), ledger_row)

    def process(self, event: dict[str, Any], ledger_row: WebhookEvent) -> WebhookResult:
        event_type = str(event.get("type"))
        log_context = {"event_id": event.get("id"), "event_type": event_type}
        handler = self._handlers.get(event_type)
        if handler is None:
            with self.transaction():
                self.ledger.mark_processed(ledger_row, status=WebhookEventStatus.IGNORED)
            prometheus_metrics.record_webhook_event(event_type, "ignored")
            return WebhookResult(status="ignored", body=_ack(event_type, "ignored"))

        data_object = (event.get("data") or {}).get("object") or {}
        deadline = ProcessingDeadline(self.budget_seconds)
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            with self.transaction():
                result = handler(data_object, deadline)
                self.ledger.mark_processed(
                    ledger_row,
                    status=(
                        WebhookEventStatus.PROCESSED if result else WebhookEventStatus.IGNORED
                    ),
                    idempotency_key=result.idempotency_key if result else None,
                    duration_ms=elapsed_ms(),
                )
        except DuplicateEventError as dup:
            self.logger.info("Duplicate delivery of %s", dup.reference, extra=log_context)
            self._record_status(
                ledger_row,
                WebhookEventStatus.DUPLICATE,
                idempotency_key=dup.reference,
                duration_ms=elapsed_ms(),
            )
            prometheus_metrics.record_webhook_event(event_type, "duplicate")
            return WebhookResult(
                status="processed",
                body=_ack(event_type, "processed", result=dup.outcome),
                replayed=True,
            )
        except (AuthenticationError, EventValidationError) as exc:
            self._record_failure(ledger_row, exc, duration_ms=elapsed_ms())
            prometheus_metrics.record_webhook_event(event_type, "rejected")
            raise
        except (PersistenceError, ReconciliationAbort, EventInFlightError) as exc:
            self.logger.error(
                "Webhook %s failed, asking processor to retry: %s",
                event.get("id"),
                exc.message,
                extra=log_context,
            )
            self._record_failure(ledger_row, exc, duration_ms=elapsed_ms())
            prometheus_metrics.record_webhook_event(event_type, "retry")
            raise
        except ProcessingDeferred as exc:
            self.logger.warning(
                "Webhook %s deferred: %s", event.get("id"), exc.message, extra=log_context
            )
            self._record_failure(
                ledger_row, exc, status=WebhookEventStatus.DEFERRED, duration_ms=elapsed_ms()
            )
            prometheus_metrics.record_webhook_event(event_type, "deferred")
            return WebhookResult(status="deferred", body=_ack(event_type, "deferred"))
        except DomainException as exc:
            self.logger.error(
                "Webhook %s could not be applied: %s",
                event.get("id"),
                exc.message,
                extra=log_context,
            )
            self._record_failure(ledger_row, exc, duration_ms=elapsed_ms())
            prometheus_metrics.record_webhook_event(event_type, "failed")
            return WebhookResult(
                status="failed", body=_ack(event_type, "failed", error=exc.code)
            )
        except Exception as exc:
            self.logger.exception(
                "Unexpected error handling webhook %s", event.get("id"), extra=log_context
            )
            self._record_failure(ledger_row, exc, duration_ms=elapsed_ms())
            prometheus_metrics.record_webhook_event(event_type, "failed")
            return WebhookResult(
                status="failed", body=_ack(event_type, "failed", error="INTERNAL_ERROR")
            )

        if result is None:
            prometheus_metrics.record_webhook_event(event_type, "ignored")
            return WebhookResult(status="ignored", body=_ack(event_type, "ignored"))

        prometheus_metrics.record_webhook_event(event_type, "processed")
        self._run_follow_ups(result, deadline)
        return WebhookResult(
            status="processed", body=_ack(event_type, "processed", result=result.outcome)
        )

    def _run_follow_ups(self, result: HandlerResult, deadline: ProcessingDeadline) -> None:
        """Best-effort calls made after the billing writes are committed."""
        for invoice in result.invoices:
            try:
                self.invoicing.create_invoice(invoice)
            except DownstreamUnavailable as exc:
                self.logger.warning(
                    "External invoice %s not created: %s", invoice.invoice_number, exc.message
                )

        if result.notification is not None and self.notifications is not None:
            outcome = self.notifications.dispatch(result.notification, deadline=deadline)
            if not outcome.success:
                self.logger.warning(
                    "Enrollment notification to %s failed after %s attempt(s): %s",
                    result.notification.recipient,
                    outcome.attempts,
                    outcome.error,
                )

    def _record_status(
        self,
        ledger_row: WebhookEvent,
        status: WebhookEventStatus,
        *,
        idempotency_key: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        try:
            with self.transaction():
                self.ledger.mark_processed(
                    ledger_row,
                    status=status,
                    idempotency_key=idempotency_key,
                    duration_ms=duration_ms,
                )
        except PersistenceError as exc:
            self.logger.warning(f"Could not update webhook ledger row {ledger_row.id}: {exc}")

    def _record_failure(
        self,
        ledger_row: WebhookEvent,
        exc: Exception,
        *,
        status: WebhookEventStatus = WebhookEventStatus.FAILED,
        duration_ms: Optional[int] = None,
    ) -> None:
        if isinstance(exc, DomainException):
            message = exc.message
        else:
            message = f"{type(exc).__name__}: {exc}"
        try:
            with self.transaction():
                self.ledger.mark_failed(
                    ledger_row, error=message, status=status, duration_ms=duration_ms
                )
        except PersistenceError as ledger_exc:
            self.logger.warning(
                f"Could not update webhook ledger row {ledger_row.id}: {ledger_exc}"
            )
