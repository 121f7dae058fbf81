"""Repository for the invoice number counter."""

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_engine.core.exceptions import RepositoryException
from billing_engine.models.invoice_counter import InvoiceCounter
from billing_engine.models.transaction import Transaction
from billing_engine.repositories.base_repository import BaseRepository


class InvoiceCounterRepository(BaseRepository[InvoiceCounter]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, InvoiceCounter)

    def max_issued_invoice_number(self) -> int | None:
        """Highest invoice number already stored on a transaction."""
        return self._execute_scalar(self.db.query(func.max(Transaction.invoice_number)))

    def seed(self, name: str, last_value: int) -> bool:
        """Create the counter row unless another caller already did."""
        return (
            self.insert_ignoring_conflict(
                [{"name": name, "last_value": last_value}], conflict_columns=["name"]
            )
            > 0
        )

    def advance(self, name: str, count: int) -> int | None:
        """
        Atomically add ``count`` to the counter and return the new last value.

        A single UPDATE ... RETURNING holds the row lock until commit, so two
        callers can never observe the same range.

        Returns:
            The new last value, or None when the counter row does not exist
        """
        stmt = (
            update(InvoiceCounter)
            .where(InvoiceCounter.name == name)
            .values(last_value=InvoiceCounter.last_value + count)
            .returning(InvoiceCounter.last_value)
            .execution_options(synchronize_session=False)
        )
        try:
            return self.db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Invoice counter advance failed: {str(e)}")
            raise RepositoryException(f"Failed to advance invoice counter: {str(e)}")
