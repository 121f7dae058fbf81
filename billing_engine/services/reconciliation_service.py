"""Administrative reconciliation actions on transactions and payout groups."""

from itertools import groupby
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import BusinessRuleException, NotFoundException, ValidationException
from ..models._common import now_utc
from ..models.transaction import Transaction, TransactionStatus
from ..repositories.transaction_repository import TransactionRepository
from .base import BaseService


class ReconciliationService(BaseService):
    """
    Manual steps that follow automatic payout linking.

    Reconciliation is one-way: there is no operation that clears the flag.
    """

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = TransactionRepository(db)

    def _get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.repository.get_by_id(transaction_id)
        if transaction is None:
            raise NotFoundException(
                f"Transaction {transaction_id} not found", code="TRANSACTION_NOT_FOUND"
            )
        return transaction

    @BaseService.measure_operation("reconcile_transaction")
    def reconcile_transaction(self, transaction_id: str) -> Transaction:
        """Mark a payout-linked transaction reconciled; already reconciled rows are left as-is."""
        with self.transaction():
            transaction = self._get_transaction(transaction_id)
            if transaction.reconciled:
                return transaction
            if not transaction.payout_id:
                raise BusinessRuleException(
                    "Only transactions linked to a payout can be reconciled",
                    code="TRANSACTION_NOT_LINKED",
                    details={"transaction_id": transaction_id},
                )
            transaction.reconciled = True
            transaction.reconciliation_date = now_utc()
            self.repository.flush()
        self.log_operation("transaction_reconciled", transaction_id=transaction_id)
        return transaction

    @BaseService.measure_operation("reconcile_payout")
    def reconcile_payout(self, payout_id: str) -> list[Transaction]:
        """Reconcile every transaction linked to ``payout_id``."""
        with self.transaction():
            transactions = self.repository.list_transactions(payout_id=payout_id, limit=10_000)
            if not transactions:
                raise NotFoundException(
                    f"No transactions linked to payout {payout_id}", code="PAYOUT_NOT_FOUND"
                )
            stamp = now_utc()
            for transaction in transactions:
                if not transaction.reconciled:
                    transaction.reconciled = True
                    transaction.reconciliation_date = stamp
            self.repository.flush()
        self.log_operation(
            "payout_reconciled_manually", payout_id=payout_id, transaction_count=len(transactions)
        )
        return transactions

    @BaseService.measure_operation("override_status")
    def override_status(self, transaction_id: str, status: str) -> Transaction:
        try:
            new_status = TransactionStatus(status)
        except ValueError as exc:
            raise ValidationException(
                f"Unsupported transaction status: {status}",
                code="INVALID_TRANSACTION_STATUS",
                details={"allowed": [s.value for s in TransactionStatus]},
            ) from exc

        with self.transaction():
            transaction = self._get_transaction(transaction_id)
            previous = transaction.status
            transaction.status = new_status.value
            if new_status is TransactionStatus.PAID and transaction.payment_date is None:
                transaction.payment_date = now_utc()
            self.repository.flush()
        self.logger.info(
            "Transaction %s status overridden: %s -> %s", transaction_id, previous, new_status.value
        )
        return transaction

    def list_transactions(
        self,
        *,
        enrollment_id: Optional[str] = None,
        payout_id: Optional[str] = None,
        unlinked_only: bool = False,
        limit: int = 100,
    ) -> list[Transaction]:
        return self.repository.list_transactions(
            enrollment_id=enrollment_id,
            payout_id=payout_id,
            unlinked_only=unlinked_only,
            limit=limit,
        )

    def payout_groups(self, limit: int = 1000) -> list[dict[str, Any]]:
        """Linked transactions grouped by payout, newest payout first."""
        groups = []
        linked = self.repository.list_linked(limit=limit)
        for payout_id, items in groupby(linked, key=lambda t: t.payout_id):
            transactions = list(items)
            groups.append(
                {
                    "payout_id": payout_id,
                    "payout_date": transactions[0].payout_date,
                    "transaction_count": len(transactions),
                    "total_amount_paid": sum(t.amount_paid or 0 for t in transactions),
                    "reconciled_count": sum(1 for t in transactions if t.reconciled),
                    "transactions": transactions,
                }
            )
        return groups
