"""
Prometheus metrics module for the billing engine.

Service timings come from the @measure_operation decorator; the webhook,
invoice, payout and notification counters are incremented by the services
that own those concerns.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "billing_engine_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operations_total = Counter(
    "billing_engine_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "billing_engine_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "billing_engine_webhook_events_total",
    "Webhook events handled, by event type and outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

invoice_numbers_issued_total = Counter(
    "billing_engine_invoice_numbers_issued_total",
    "Invoice numbers handed out by the numbering service",
    registry=REGISTRY,
)

payout_transactions_matched_total = Counter(
    "billing_engine_payout_transactions_matched_total",
    "Transactions linked to a payout by reconciliation",
    registry=REGISTRY,
)

notification_attempts_total = Counter(
    "billing_engine_notification_attempts_total",
    "Notification send attempts by category and final outcome",
    ["category", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin facade used by services so label handling lives in one place."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'PayoutMatcher')
            operation: Operation/method name (e.g., 'reconcile')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_invoice_numbers(count: int) -> None:
        invoice_numbers_issued_total.inc(count)

    @staticmethod
    def record_payout_matches(count: int) -> None:
        if count:
            payout_transactions_matched_total.inc(count)

    @staticmethod
    def record_notification(category: str, outcome: str, attempts: int) -> None:
        notification_attempts_total.labels(category=category, outcome=outcome).inc(max(attempts, 0))

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
