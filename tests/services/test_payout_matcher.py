"""
Tests for PayoutMatcher: settled-charge scanning and transaction linking.
"""

from datetime import datetime, timezone
from decimal import Decimal
from itertools import count

import pytest
from sqlalchemy.orm import Session

from billing_engine.core.deadline import ProcessingDeadline
from billing_engine.core.exceptions import (
    DuplicateEventError,
    EventValidationError,
    ProcessingDeferred,
    ReconciliationAbort,
)
from billing_engine.models.course_class import CourseClass
from billing_engine.models.enrollment import Enrollment
from billing_engine.models.payout_charge_reference import PayoutChargeReference
from billing_engine.models.student import Student
from billing_engine.models.transaction import Transaction
from billing_engine.services.payout_matcher import PayoutMatcher, parse_arrival_date

ARRIVAL = datetime(2026, 1, 20, tzinfo=timezone.utc)
_invoice_numbers = count(300001)


def _transaction(db: Session, course_class: CourseClass, reference: str) -> Transaction:
    student = Student(email=f"{reference}@example.com")
    db.add(student)
    db.flush()
    enrollment = Enrollment(student_id=student.id, class_id=course_class.id)
    db.add(enrollment)
    db.flush()
    transaction = Transaction(
        enrollment_id=enrollment.id,
        class_id=course_class.id,
        student_id=student.id,
        transaction_type="registration_fee",
        quantity=Decimal("1"),
        amount_due=15000,
        amount_paid=15000,
        status="paid",
        payment_reference=reference,
        invoice_number=next(_invoice_numbers),
    )
    db.add(transaction)
    db.commit()
    return transaction


@pytest.fixture
def matcher(db: Session, charge_source) -> PayoutMatcher:
    return PayoutMatcher(db, charge_source, page_size=2)


def test_links_only_transactions_settled_by_payout(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    settled = _transaction(db, course_class, "pi_a")
    other = _transaction(db, course_class, "pi_b")
    charge_source.add_payout("po_1", ["pi_a", None, "pi_unknown"])

    result = matcher.reconcile("po_1", ARRIVAL)
    db.commit()

    assert result.matched_count == 1
    assert result.references_found == 2
    db.refresh(settled)
    db.refresh(other)
    assert settled.payout_id == "po_1"
    assert settled.payout_date is not None
    assert settled.reconciled is False
    assert other.payout_id is None


def test_scans_every_page_using_last_item_as_cursor(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    references = [f"pi_{i}" for i in range(5)]
    for reference in references:
        _transaction(db, course_class, reference)
    charge_source.add_payout("po_big", references)

    result = matcher.reconcile("po_big", ARRIVAL)

    assert result.matched_count == 5
    assert [call["starting_after"] for call in charge_source.calls] == [
        None,
        "txn_po_big_1",
        "txn_po_big_3",
    ]


def test_failed_page_aborts_without_linking_anything(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    references = [f"pi_{i}" for i in range(5)]
    for reference in references:
        _transaction(db, course_class, reference)
    charge_source.add_payout("po_broken", references)
    charge_source.fail_on_page = 2

    with pytest.raises(ReconciliationAbort):
        matcher.reconcile("po_broken", ARRIVAL)
    db.rollback()

    assert db.query(Transaction).filter(Transaction.payout_id.is_not(None)).count() == 0
    assert db.query(PayoutChargeReference).count() == 0


def test_already_linked_payout_is_not_rescanned(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    _transaction(db, course_class, "pi_a")
    charge_source.add_payout("po_1", ["pi_a"])
    matcher.reconcile("po_1", ARRIVAL)
    db.commit()
    calls_before = len(charge_source.calls)

    result = matcher.reconcile("po_1", ARRIVAL)

    assert result.already_reconciled is True
    assert result.matched_count == 1
    assert len(charge_source.calls) == calls_before


def test_payout_with_no_charges_matches_nothing(matcher: PayoutMatcher, charge_source):
    charge_source.add_payout("po_empty", [])

    result = matcher.reconcile("po_empty", ARRIVAL)

    assert result.matched_count == 0
    assert result.references_found == 0


def test_existing_payout_link_is_never_overwritten(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    transaction = _transaction(db, course_class, "pi_a")
    transaction.payout_id = "po_first"
    db.commit()
    charge_source.add_payout("po_second", ["pi_a"])

    result = matcher.reconcile("po_second", ARRIVAL)

    assert result.matched_count == 0
    db.refresh(transaction)
    assert transaction.payout_id == "po_first"


def test_expired_budget_defers_scan(matcher: PayoutMatcher, charge_source):
    charge_source.add_payout("po_slow", ["pi_a"])

    with pytest.raises(ProcessingDeferred):
        matcher.reconcile("po_slow", ARRIVAL, deadline=ProcessingDeadline(budget_seconds=0))


def test_transactions_created_after_payout_are_linked(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    charge_source.add_payout("po_early", ["pi_late"])
    matcher.reconcile("po_early", ARRIVAL)
    db.commit()

    transaction = _transaction(db, course_class, "pi_late")
    linked = matcher.link_if_settled([transaction])

    assert linked == 1
    assert transaction.payout_id == "po_early"


def test_payout_fills_settlement_row_claimed_by_transaction(
    db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
):
    transaction = _transaction(db, course_class, "pi_a")
    assert matcher.link_if_settled([transaction]) == 0
    db.commit()
    claimed = db.query(PayoutChargeReference).one()
    assert claimed.payout_id is None

    charge_source.add_payout("po_1", ["pi_a"])
    result = matcher.reconcile("po_1", ARRIVAL)
    db.commit()

    assert result.matched_count == 1
    db.refresh(claimed)
    db.refresh(transaction)
    assert claimed.payout_id == "po_1"
    assert transaction.payout_id == "po_1"


def test_settled_reference_keeps_its_first_payout(
    db: Session, matcher: PayoutMatcher, charge_source
):
    charge_source.add_payout("po_first", ["pi_a"])
    charge_source.add_payout("po_second", ["pi_a"])
    matcher.reconcile("po_first", ARRIVAL)
    db.commit()

    matcher.reconcile("po_second", ARRIVAL)
    db.commit()

    row = db.query(PayoutChargeReference).one()
    db.refresh(row)
    assert row.payout_id == "po_first"


class TestHandlePayoutPaid:
    def test_records_outcome_and_rejects_redelivery(
        self, db: Session, matcher: PayoutMatcher, charge_source, course_class: CourseClass
    ):
        _transaction(db, course_class, "pi_a")
        charge_source.add_payout("po_1", ["pi_a"])

        result = matcher.handle_payout_paid({"id": "po_1", "arrival_date": 1768867200})
        db.commit()

        assert result.idempotency_key == "po_1"
        assert result.outcome["matched_count"] == 1
        assert result.outcome["payout_date"].startswith("2026-01-20")

        with pytest.raises(DuplicateEventError) as exc_info:
            matcher.handle_payout_paid({"id": "po_1", "arrival_date": 1768867200})
        assert exc_info.value.outcome == result.outcome

    def test_missing_payout_id_is_invalid(self, matcher: PayoutMatcher):
        with pytest.raises(EventValidationError):
            matcher.handle_payout_paid({"arrival_date": 1768867200})


@pytest.mark.parametrize(
    "value, expected",
    [
        (1768867200, ARRIVAL),
        ("1768867200", ARRIVAL),
        ("2026-01-20T00:00:00Z", ARRIVAL),
        (None, None),
        ("garbage", None),
    ],
)
def test_parse_arrival_date(value, expected):
    assert parse_arrival_date(value) == expected
