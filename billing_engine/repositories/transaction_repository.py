"""Repository for billing transactions."""

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_engine.core.exceptions import RepositoryException
from billing_engine.models.transaction import Transaction
from billing_engine.repositories.base_repository import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Transaction)

    def add_all(self, transactions: List[Transaction]) -> List[Transaction]:
        """Persist freshly built transactions in list order."""
        try:
            self.db.add_all(transactions)
            self.db.flush()
            return transactions
        except SQLAlchemyError as e:
            self.logger.error(f"Error persisting transactions: {str(e)}")
            raise RepositoryException(f"Failed to persist transactions: {str(e)}")

    def find_by_payment_reference(self, payment_reference: str) -> Optional[Transaction]:
        return self.find_one_by(payment_reference=payment_reference)

    def list_for_enrollment(self, enrollment_id: str) -> List[Transaction]:
        query = (
            self._build_query()
            .filter(Transaction.enrollment_id == enrollment_id)
            .order_by(Transaction.invoice_number.asc())
        )
        return self._execute_query(query)

    def count_for_payout(self, payout_id: str) -> int:
        query = self.db.query(func.count(Transaction.id)).filter(Transaction.payout_id == payout_id)
        return int(self._execute_scalar(query) or 0)

    def link_payout(
        self, payment_references: Iterable[str], payout_id: str, payout_date: datetime
    ) -> int:
        """
        Bulk-link every still-unlinked transaction whose payment reference is in the set.

        Transactions already carrying a payout are left untouched.

        Returns:
            Number of rows updated
        """
        references = sorted(set(payment_references))
        if not references:
            return 0
        stmt = (
            update(Transaction)
            .where(
                Transaction.payment_reference.in_(references),
                Transaction.payout_id.is_(None),
            )
            .values(payout_id=payout_id, payout_date=payout_date)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            # Loaded Transaction instances would otherwise keep stale payout fields
            self.db.expire_all()
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Payout link update failed for {payout_id}: {str(e)}")
            raise RepositoryException(f"Failed to link payout {payout_id}: {str(e)}")

    def list_transactions(
        self,
        *,
        enrollment_id: Optional[str] = None,
        payout_id: Optional[str] = None,
        unlinked_only: bool = False,
        limit: int = 100,
    ) -> List[Transaction]:
        query = self._build_query()
        if enrollment_id:
            query = query.filter(Transaction.enrollment_id == enrollment_id)
        if payout_id:
            query = query.filter(Transaction.payout_id == payout_id)
        if unlinked_only:
            query = query.filter(
                Transaction.payout_id.is_(None), Transaction.payment_reference.is_not(None)
            )
        query = query.order_by(Transaction.invoice_number.asc()).limit(limit)
        return self._execute_query(query)

    def list_linked(self, limit: int = 1000) -> List[Transaction]:
        """Linked transactions, newest payout first, ready to group by payout id."""
        query = (
            self._build_query()
            .filter(Transaction.payout_id.is_not(None))
            .order_by(
                Transaction.payout_date.desc(),
                Transaction.payout_id.asc(),
                Transaction.invoice_number.asc(),
            )
            .limit(limit)
        )
        return self._execute_query(query)
