"""
Tests for the idempotency ledger: first reservation wins, later ones see the outcome.
"""

import pytest
from sqlalchemy.orm import Session

from billing_engine.core.exceptions import EventInFlightError, EventValidationError
from billing_engine.models.idempotency_record import IdempotencyKind, IdempotencyRecord
from billing_engine.services.idempotency_ledger import IdempotencyLedger


@pytest.fixture
def ledger(db: Session) -> IdempotencyLedger:
    return IdempotencyLedger(db)


def test_first_reservation_is_fresh(ledger: IdempotencyLedger, db: Session):
    reservation = ledger.check_and_reserve("pi_123", IdempotencyKind.ENROLLMENT)

    assert reservation.already_processed is False
    assert reservation.prior_outcome is None
    assert db.query(IdempotencyRecord).filter_by(reference="pi_123").count() == 1


def test_recorded_outcome_is_returned_on_next_check(ledger: IdempotencyLedger, db: Session):
    reservation = ledger.check_and_reserve("pi_123", IdempotencyKind.ENROLLMENT)
    ledger.record_outcome(reservation, {"enrollment": {"id": "E1"}})
    db.commit()

    again = ledger.check_and_reserve("pi_123", IdempotencyKind.ENROLLMENT)

    assert again.already_processed is True
    assert again.prior_outcome == {"enrollment": {"id": "E1"}}
    assert db.query(IdempotencyRecord).count() == 1


def test_committed_row_without_outcome_is_in_flight(ledger: IdempotencyLedger, db: Session):
    # Written directly, the way a manual insert or partial restore would leave it
    db.add(IdempotencyRecord(reference="po_1", kind=IdempotencyKind.PAYOUT.value))
    db.commit()

    with pytest.raises(EventInFlightError) as exc_info:
        ledger.check_and_reserve("po_1", IdempotencyKind.PAYOUT)

    assert exc_info.value.reference == "po_1"


def test_rolled_back_reservation_can_be_retried(ledger: IdempotencyLedger, db: Session):
    ledger.check_and_reserve("pi_retry", IdempotencyKind.ENROLLMENT)
    db.rollback()

    reservation = ledger.check_and_reserve("pi_retry", IdempotencyKind.ENROLLMENT)

    assert reservation.already_processed is False


def test_empty_reference_is_rejected(ledger: IdempotencyLedger):
    with pytest.raises(EventValidationError):
        ledger.check_and_reserve("", IdempotencyKind.ENROLLMENT)


def test_only_fresh_reservations_record_outcomes(ledger: IdempotencyLedger, db: Session):
    reservation = ledger.check_and_reserve("pi_9", IdempotencyKind.ENROLLMENT)
    ledger.record_outcome(reservation, {"ok": True})
    db.commit()
    replay = ledger.check_and_reserve("pi_9", IdempotencyKind.ENROLLMENT)

    with pytest.raises(ValueError):
        ledger.record_outcome(replay, {"ok": False})
    assert ledger.lookup("pi_9") == {"ok": True}
    assert ledger.lookup("pi_unknown") is None
