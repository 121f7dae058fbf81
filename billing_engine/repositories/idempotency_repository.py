"""Repository backing the idempotency ledger."""

from typing import Any, Optional

from sqlalchemy.orm import Session

from billing_engine.models._common import now_utc
from billing_engine.models.idempotency_record import IdempotencyRecord
from billing_engine.repositories.base_repository import BaseRepository


class IdempotencyRepository(BaseRepository[IdempotencyRecord]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, IdempotencyRecord)

    def reserve(self, reference: str, kind: str) -> bool:
        """Insert the reservation row. False means the reference already exists."""
        return (
            self.insert_ignoring_conflict(
                [{"reference": reference, "kind": kind}], conflict_columns=["reference"]
            )
            > 0
        )

    def get_by_reference(self, reference: str) -> Optional[IdempotencyRecord]:
        return self.find_one_by(reference=reference)

    def complete(self, record: IdempotencyRecord, outcome: dict[str, Any]) -> IdempotencyRecord:
        record.outcome = outcome
        record.completed_at = now_utc()
        self.flush()
        return record
