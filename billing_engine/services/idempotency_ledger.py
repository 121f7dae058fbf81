"""
Idempotency ledger: external reference -> outcome of its first successful processing.

Reservation happens inside the caller's database transaction. The unique
constraint on the reference column arbitrates concurrent deliveries: the
loser's insert is skipped (PostgreSQL waits for the winner to commit or roll
back first) and the loser then reads the winner's committed outcome.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..core.exceptions import EventInFlightError, EventValidationError, PersistenceError
from ..models.idempotency_record import IdempotencyKind, IdempotencyRecord
from ..repositories.idempotency_repository import IdempotencyRepository
from .base import BaseService


@dataclass(frozen=True)
class Reservation:
    reference: str
    already_processed: bool
    prior_outcome: Optional[dict[str, Any]] = None
    record: Optional[IdempotencyRecord] = None


class IdempotencyLedger(BaseService):
    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = IdempotencyRepository(db)

    @BaseService.measure_operation("check_and_reserve")
    def check_and_reserve(self, reference: str, kind: IdempotencyKind) -> Reservation:
        """
        Reserve ``reference`` or report the outcome it already produced.

        Raises:
            EventValidationError: empty reference
            EventInFlightError: a committed reservation has no outcome
        """
        if not reference:
            raise EventValidationError("Idempotency reference is required", field="reference")

        inserted = self.repository.reserve(reference, kind.value)
        record = self.repository.get_by_reference(reference)
        if record is None:
            raise PersistenceError(f"Idempotency record for {reference} could not be read back")

        if inserted:
            self.logger.debug("Reserved idempotency reference %s", reference)
            return Reservation(reference=reference, already_processed=False, record=record)

        # Reservations commit together with their outcome, so a concurrent delivery
        # waits on the unique index and then reads the outcome. A committed row
        # without one was written outside this ledger (manual insert or restore).
        if record.outcome is None:
            raise EventInFlightError(reference)

        self.logger.info(
            "Idempotency hit for %s",
            reference,
            extra={"reference": reference, "kind": kind.value},
        )
        return Reservation(
            reference=reference,
            already_processed=True,
            prior_outcome=record.outcome,
            record=record,
        )

    def record_outcome(self, reservation: Reservation, outcome: dict[str, Any]) -> None:
        """Attach the outcome to a fresh reservation; committed with the business writes."""
        if reservation.already_processed or reservation.record is None:
            raise ValueError("Only a fresh reservation can record an outcome")
        self.repository.complete(reservation.record, outcome)

    def lookup(self, reference: str) -> Optional[dict[str, Any]]:
        record = self.repository.get_by_reference(reference)
        return record.outcome if record is not None else None
