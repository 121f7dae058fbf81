"""Service for logging and replaying webhooks."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException, PersistenceError
from ..models._common import now_utc
from ..models.webhook_event import WebhookEvent, WebhookEventStatus
from ..repositories.webhook_event_repository import WebhookEventRepository
from .base import BaseService


class WebhookLedgerService(BaseService):
    """Business logic for webhook ledger entries. Callers own the commit."""

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = WebhookEventRepository(db)

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(self, *, source: str, event: dict[str, Any]) -> WebhookEvent:
        """
        Log a received webhook before processing.

        A redelivery of a logged event bumps its retry counter instead of
        creating a second row; concurrent first deliveries are arbitrated by
        the (source, event_id) unique constraint.
        """
        event_id = str(event["id"])
        inserted = self.repository.insert_if_absent(
            source=source,
            event_id=event_id,
            event_type=str(event.get("type") or "unknown"),
            payload=event,
        )
        row = self.repository.get_by_source_event(source, event_id)
        if row is None:
            raise PersistenceError(f"Webhook event {source}/{event_id} could not be read back")
        if not inserted:
            row.retry_count = (row.retry_count or 0) + 1
            self.repository.flush()
        return row

    def mark_processed(
        self,
        event: WebhookEvent,
        *,
        status: WebhookEventStatus = WebhookEventStatus.PROCESSED,
        idempotency_key: str | None = None,
        duration_ms: int | None = None,
    ) -> WebhookEvent:
        """Mark webhook as handled (processed, ignored or duplicate)."""
        event.status = status.value
        event.processing_error = None
        event.processed_at = now_utc()
        event.processing_duration_ms = duration_ms
        if idempotency_key:
            event.idempotency_key = idempotency_key
        self.repository.flush()
        return event

    def mark_failed(
        self,
        event: WebhookEvent,
        *,
        error: str,
        status: WebhookEventStatus = WebhookEventStatus.FAILED,
        duration_ms: int | None = None,
    ) -> WebhookEvent:
        """Mark webhook as failed or deferred for manual follow-up."""
        event.status = status.value
        event.processing_error = error
        event.processed_at = now_utc()
        event.processing_duration_ms = duration_ms
        self.repository.flush()
        return event

    def mark_replayed(self, event: WebhookEvent) -> WebhookEvent:
        event.replay_count = (event.replay_count or 0) + 1
        self.repository.flush()
        return event

    def get_event(self, event_id: str) -> WebhookEvent:
        event = self.repository.get_by_id(event_id)
        if event is None:
            raise NotFoundException(f"Webhook event {event_id} not found", code="WEBHOOK_NOT_FOUND")
        return event

    def list_events(
        self,
        *,
        status: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        return self.repository.list_events(status=status, event_type=event_type, limit=limit)
