"""Repository helpers for webhook event ledger."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from billing_engine.models.webhook_event import WebhookEvent
from billing_engine.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WebhookEventRepository(BaseRepository[WebhookEvent]):
    """Repository for webhook ledger queries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, WebhookEvent)

    def insert_if_absent(
        self, *, source: str, event_id: str, event_type: str, payload: dict[str, Any]
    ) -> bool:
        return (
            self.insert_ignoring_conflict(
                [
                    {
                        "source": source,
                        "event_id": event_id,
                        "event_type": event_type,
                        "payload": payload,
                    }
                ],
                conflict_columns=["source", "event_id"],
            )
            > 0
        )

    def get_by_source_event(self, source: str, event_id: str) -> Optional[WebhookEvent]:
        return self.find_one_by(source=source, event_id=event_id)

    def list_events(
        self,
        *,
        source: str | None = None,
        status: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
    ) -> list[WebhookEvent]:
        """Return recent webhook events filtered by criteria."""
        query = self._build_query()
        if source:
            query = query.filter(WebhookEvent.source == source)
        if status:
            query = query.filter(WebhookEvent.status == status)
        if event_type:
            query = query.filter(WebhookEvent.event_type == event_type)
        query = query.order_by(WebhookEvent.received_at.desc()).limit(limit)
        return self._execute_query(query)
