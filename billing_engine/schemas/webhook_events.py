"""Webhook ledger DTOs."""

from datetime import datetime
from typing import Any, Optional

from ._strict_base import StrictModel


class WebhookEventResponse(StrictModel):
    id: str
    source: str
    event_type: str
    event_id: str
    status: str
    processing_error: Optional[str] = None
    processing_duration_ms: Optional[int] = None
    idempotency_key: Optional[str] = None
    retry_count: int
    replay_count: int
    received_at: datetime
    processed_at: Optional[datetime] = None


class WebhookEventListResponse(StrictModel):
    events: list[WebhookEventResponse]
    total: int


class WebhookReplayResponse(StrictModel):
    event: WebhookEventResponse
    status: str
    result: dict[str, Any]
