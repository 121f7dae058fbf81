"""Repository for notification delivery logs."""

from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from billing_engine.models.notification_log import NotificationLog
from billing_engine.repositories.base_repository import BaseRepository


class NotificationLogRepository(BaseRepository[NotificationLog]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, NotificationLog)

    def list_logs(
        self,
        *,
        category: Optional[str] = None,
        success: Optional[bool] = None,
        enrollment_id: Optional[str] = None,
        student_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[NotificationLog]:
        query = self._build_query()
        if category:
            query = query.filter(NotificationLog.category == category)
        if success is not None:
            query = query.filter(NotificationLog.success.is_(success))
        if enrollment_id:
            query = query.filter(NotificationLog.enrollment_id == enrollment_id)
        if student_id:
            query = query.filter(NotificationLog.student_id == student_id)
        query = query.order_by(NotificationLog.created_at.desc()).offset(offset).limit(limit)
        return self._execute_query(query)

    def delivery_counts(self) -> Dict[str, Dict[str, Any]]:
        """Sent/failed totals per category."""
        query = self.db.query(
            NotificationLog.category,
            func.sum(case((NotificationLog.success.is_(True), 1), else_=0)),
            func.sum(case((NotificationLog.success.is_(False), 1), else_=0)),
        ).group_by(NotificationLog.category)
        rows = self._execute_query(query)
        return {
            category: {"sent": int(sent or 0), "failed": int(failed or 0)}
            for category, sent, failed in rows
        }
