"""Repository for per-reference settlement rows."""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_engine.core.exceptions import RepositoryException
from billing_engine.models.payout_charge_reference import PayoutChargeReference
from billing_engine.repositories.base_repository import BaseRepository


class PayoutChargeReferenceRepository(BaseRepository[PayoutChargeReference]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, PayoutChargeReference)

    def record(self, payout_id: str, references: Iterable[str], payout_date: datetime) -> None:
        """
        Attach ``payout_id`` to each reference.

        Rows claimed by a transaction get the payout filled in; a reference
        already settled by another payout keeps its first payout.
        """
        rows = [
            {"payout_id": payout_id, "payment_reference": reference, "payout_date": payout_date}
            for reference in sorted(set(references))
        ]
        self.upsert(
            rows,
            conflict_columns=["payment_reference"],
            update_columns=["payout_id", "payout_date"],
            update_where=PayoutChargeReference.payout_id.is_(None),
        )

    def claim(self, payment_reference: str) -> Optional[PayoutChargeReference]:
        """
        Make sure a row exists for ``payment_reference`` and return its current state.

        Blocks while a concurrent payout scan holds the same key, so the row
        read back includes that payout once it commits.
        """
        self.insert_ignoring_conflict(
            [{"payment_reference": payment_reference}], conflict_columns=["payment_reference"]
        )
        return self.find_for_reference(payment_reference)

    def find_for_reference(self, payment_reference: str) -> Optional[PayoutChargeReference]:
        try:
            return (
                self._build_query()
                .filter(PayoutChargeReference.payment_reference == payment_reference)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading settlement row for {payment_reference}: {str(e)}")
            raise RepositoryException(f"Failed to load settlement row: {str(e)}")
