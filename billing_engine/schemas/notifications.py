"""Notification log DTOs."""

from datetime import datetime
from typing import Any, Optional

from ._strict_base import StrictModel


class NotificationLogResponse(StrictModel):
    id: str
    recipient_email: str
    recipient_name: Optional[str] = None
    subject: str
    category: str
    enrollment_id: Optional[str] = None
    student_id: Optional[str] = None
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    attempts: int
    created_at: datetime


class NotificationLogListResponse(StrictModel):
    logs: list[NotificationLogResponse]
    metrics: Optional[dict[str, Any]] = None
