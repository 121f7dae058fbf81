"""
Tests for WebhookDispatcher: verification, routing and the webhook ledger.
"""

import json

import pytest
from sqlalchemy.orm import Session

from billing_engine.core.deadline import ProcessingDeadline
from billing_engine.core.exceptions import (
    AuthenticationError,
    EventValidationError,
    ReconciliationAbort,
)
from billing_engine.integrations.stripe_gateway import StripeGateway
from billing_engine.models.course_class import CourseClass
from billing_engine.models.enrollment import Enrollment
from billing_engine.models.transaction import Transaction
from billing_engine.models.webhook_event import WebhookEvent
from billing_engine.services import webhook_dispatcher as webhook_dispatcher_module
from billing_engine.services.webhook_dispatcher import WebhookDispatcher


def _deliver(dispatcher, make_event, sign_payload, event_type, data, event_id="evt_1"):
    payload = make_event(event_type, data, event_id=event_id)
    return dispatcher.handle(payload, sign_payload(payload))


def test_missing_signature_is_rejected(dispatcher: WebhookDispatcher, make_event):
    with pytest.raises(AuthenticationError):
        dispatcher.handle(make_event("payout.paid", {"id": "po_1"}), None)


def test_wrong_secret_is_rejected(dispatcher: WebhookDispatcher, make_event, sign_payload):
    payload = make_event("payout.paid", {"id": "po_1"})

    with pytest.raises(AuthenticationError):
        dispatcher.handle(payload, sign_payload(payload, secret="whsec_other"))


def test_secondary_secret_is_accepted(db: Session, make_event, sign_payload, charge_source):
    gateway = StripeGateway(api_key="", webhook_secrets=["whsec_old", "whsec_new"])
    dispatcher = WebhookDispatcher(db, verifier=gateway, charge_source=charge_source)
    payload = make_event("customer.created", {"id": "cus_1"})

    result = dispatcher.handle(payload, sign_payload(payload, secret="whsec_new"))

    assert result.status == "ignored"


def test_signed_payload_without_type_is_invalid(dispatcher: WebhookDispatcher, sign_payload):
    payload = json.dumps({"id": "evt_1"}).encode()

    with pytest.raises(EventValidationError):
        dispatcher.handle(payload, sign_payload(payload))


def test_unhandled_event_type_is_acknowledged_and_ignored(
    db: Session, dispatcher: WebhookDispatcher, make_event, sign_payload
):
    result = _deliver(dispatcher, make_event, sign_payload, "invoice.created", {"id": "in_1"})

    assert result.status == "ignored"
    assert result.body == {"received": True, "event_type": "invoice.created", "status": "ignored"}
    assert db.query(WebhookEvent).one().status == "ignored"


def test_checkout_completed_records_enrollment_and_sends_email(
    db: Session,
    dispatcher: WebhookDispatcher,
    make_event,
    sign_payload,
    checkout_session,
    course_class,
    email_sender,
    invoicing,
):
    result = _deliver(
        dispatcher, make_event, sign_payload, "checkout.session.completed", checkout_session()
    )

    assert result.status == "processed"
    assert result.replayed is False
    assert result.body["result"]["payment_reference"] == "pi_1"
    ledger_row = db.query(WebhookEvent).one()
    assert ledger_row.status == "processed"
    assert ledger_row.idempotency_key == "pi_1"
    assert len(email_sender.sent) == 1
    assert len(invoicing.requests) == 1


def test_redelivery_replays_identical_body(
    db: Session,
    dispatcher: WebhookDispatcher,
    make_event,
    sign_payload,
    checkout_session,
    course_class,
    email_sender,
):
    session = checkout_session()
    first = _deliver(dispatcher, make_event, sign_payload, "checkout.session.completed", session)
    second = _deliver(
        dispatcher,
        make_event,
        sign_payload,
        "checkout.session.completed",
        session,
        event_id="evt_2",
    )

    assert second.replayed is True
    assert second.body == first.body
    assert len(email_sender.sent) == 1
    statuses = {row.event_id: row.status for row in db.query(WebhookEvent)}
    assert statuses == {"evt_1": "processed", "evt_2": "duplicate"}


def test_same_event_redelivered_bumps_retry_count(
    db: Session, dispatcher: WebhookDispatcher, make_event, sign_payload
):
    payload = make_event("invoice.created", {"id": "in_1"})
    dispatcher.handle(payload, sign_payload(payload))
    dispatcher.handle(payload, sign_payload(payload))

    row = db.query(WebhookEvent).one()
    assert row.retry_count == 1


def test_missing_class_fails_but_is_acknowledged(
    db: Session, dispatcher: WebhookDispatcher, make_event, sign_payload, checkout_session
):
    result = _deliver(
        dispatcher,
        make_event,
        sign_payload,
        "checkout.session.completed",
        checkout_session(class_id="MISSING"),
    )

    assert result.status == "failed"
    assert result.body["error"] == "CLASS_NOT_FOUND"
    row = db.query(WebhookEvent).one()
    assert row.status == "failed"
    assert "MISSING" in row.processing_error


def test_invalid_checkout_payload_propagates(
    db: Session, dispatcher: WebhookDispatcher, make_event, sign_payload, checkout_session
):
    with pytest.raises(EventValidationError):
        _deliver(
            dispatcher,
            make_event,
            sign_payload,
            "checkout.session.completed",
            checkout_session(metadata={}),
        )
    assert db.query(WebhookEvent).one().status == "failed"


def test_payout_scan_failure_propagates_for_retry(
    db: Session, dispatcher: WebhookDispatcher, make_event, sign_payload, charge_source
):
    charge_source.add_payout("po_1", ["pi_a", "pi_b"])
    charge_source.fail_on_page = 1

    with pytest.raises(ReconciliationAbort):
        _deliver(dispatcher, make_event, sign_payload, "payout.paid", {"id": "po_1"})

    assert db.query(WebhookEvent).one().status == "failed"
    charge_source.fail_on_page = None
    retried = _deliver(
        dispatcher, make_event, sign_payload, "payout.paid", {"id": "po_1"}, event_id="evt_1"
    )
    assert retried.status == "processed"


def test_replay_reprocesses_stored_event(
    db: Session, dispatcher: WebhookDispatcher, make_event, sign_payload, checkout_session
):
    _deliver(
        dispatcher,
        make_event,
        sign_payload,
        "checkout.session.completed",
        checkout_session(class_id="CLS1"),
    )
    row = db.query(WebhookEvent).one()
    assert row.status == "failed"

    db.add(CourseClass(class_id="CLS1", product_type="course", registration_fee=15000))
    db.commit()

    result = dispatcher.replay(row.id)

    assert result.status == "processed"
    db.refresh(row)
    assert row.status == "processed"
    assert row.replay_count == 1


def test_exhausted_budget_defers_payout_and_acknowledges(
    db: Session,
    dispatcher: WebhookDispatcher,
    make_event,
    sign_payload,
    charge_source,
    monkeypatch,
):
    monkeypatch.setattr(
        webhook_dispatcher_module,
        "ProcessingDeadline",
        lambda _budget: ProcessingDeadline(budget_seconds=0),
    )
    charge_source.add_payout("po_1", ["pi_a"])

    result = _deliver(dispatcher, make_event, sign_payload, "payout.paid", {"id": "po_1"})

    assert result.status == "deferred"
    assert result.body == {"received": True, "event_type": "payout.paid", "status": "deferred"}
    assert db.query(WebhookEvent).one().status == "deferred"
    assert charge_source.calls == []


def test_async_payment_success_completes_delayed_checkout(
    db: Session,
    dispatcher: WebhookDispatcher,
    make_event,
    sign_payload,
    checkout_session,
    course_class,
):
    pending = _deliver(
        dispatcher,
        make_event,
        sign_payload,
        "checkout.session.completed",
        checkout_session(payment_status="unpaid"),
        event_id="evt_pending",
    )
    assert pending.status == "ignored"
    assert db.query(Enrollment).count() == 0

    result = _deliver(
        dispatcher,
        make_event,
        sign_payload,
        "checkout.session.async_payment_succeeded",
        checkout_session(),
        event_id="evt_paid",
    )

    assert result.status == "processed"
    assert db.query(Enrollment).count() == 1
    assert db.query(Transaction).one().payment_reference == "pi_1"
