"""
HTTP tests for POST /api/v1/webhooks/stripe.
"""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from billing_engine.core.deadline import ProcessingDeadline
from billing_engine.models.enrollment import Enrollment
from billing_engine.models.idempotency_record import IdempotencyRecord
from billing_engine.models.student import Student
from billing_engine.models.transaction import Transaction
from billing_engine.services import webhook_dispatcher as webhook_dispatcher_module

WEBHOOK_URL = "/api/v1/webhooks/stripe"


def _post(client: TestClient, payload: bytes, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return client.post(WEBHOOK_URL, content=payload, headers=headers)


def test_bad_signature_returns_400(client: TestClient, make_event, sign_payload):
    payload = make_event("payout.paid", {"id": "po_1"})

    response = _post(client, payload, sign_payload(payload, secret="whsec_wrong"))

    assert response.status_code == 400


def test_missing_signature_returns_400(client: TestClient, make_event):
    response = _post(client, make_event("payout.paid", {"id": "po_1"}), None)

    assert response.status_code == 400


def test_unhandled_event_returns_200(client: TestClient, make_event, sign_payload):
    payload = make_event("charge.refunded", {"id": "ch_1"})

    response = _post(client, payload, sign_payload(payload))

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_course_purchase_end_to_end(
    client: TestClient, db: Session, make_event, sign_payload, checkout_session, course_class
):
    payload = make_event("checkout.session.completed", checkout_session())

    response = _post(client, payload, sign_payload(payload))

    assert response.status_code == 200
    body = response.json()
    assert body["received"] is True
    assert body["status"] == "processed"
    assert body["result"]["student"]["email"] == "ada@example.com"
    assert body["result"]["transactions"][0]["status"] == "paid"
    assert "Idempotent-Replay" not in response.headers
    assert db.query(Student).count() == 1
    assert db.query(Enrollment).count() == 1
    assert db.query(Transaction).count() == 1


def test_redelivery_is_idempotent(
    client: TestClient, db: Session, make_event, sign_payload, checkout_session, course_class
):
    payload = make_event("checkout.session.completed", checkout_session())
    first = _post(client, payload, sign_payload(payload))
    second = _post(client, payload, sign_payload(payload))

    assert second.status_code == 200
    assert second.json() == first.json()
    assert second.headers["Idempotent-Replay"] == "true"
    assert db.query(Transaction).count() == 1
    assert db.query(IdempotencyRecord).count() == 1


def test_payout_links_program_registration_fee(
    client: TestClient,
    db: Session,
    make_event,
    sign_payload,
    checkout_session,
    program_class,
    charge_source,
):
    checkout = make_event(
        "checkout.session.completed",
        checkout_session(payment_intent="pi_prog", class_id="CLS2", amount_total=25000),
        event_id="evt_checkout",
    )
    assert _post(client, checkout, sign_payload(checkout)).status_code == 200

    charge_source.add_payout("po_1", ["pi_prog", "pi_elsewhere"])
    payout = make_event(
        "payout.paid", {"id": "po_1", "arrival_date": 1768867200}, event_id="evt_payout"
    )
    response = _post(client, payout, sign_payload(payout))

    assert response.status_code == 200
    assert response.json()["result"]["matched_count"] == 1
    linked = db.query(Transaction).filter(Transaction.payout_id == "po_1").all()
    assert [t.transaction_type for t in linked] == ["registration_fee"]
    assert all(t.reconciled is False for t in linked)


def test_payout_scan_failure_returns_500(
    client: TestClient, make_event, sign_payload, charge_source
):
    charge_source.add_payout("po_1", ["pi_a"])
    charge_source.fail_on_page = 1
    payload = make_event("payout.paid", {"id": "po_1"})

    response = _post(client, payload, sign_payload(payload))

    assert response.status_code == 500
    assert response.json()["code"] == "RECONCILIATION_ABORTED"


def test_in_flight_reference_returns_503_with_retry_after(
    client: TestClient, db: Session, make_event, sign_payload
):
    db.add(IdempotencyRecord(reference="po_busy", kind="payout"))
    db.commit()
    payload = make_event("payout.paid", {"id": "po_busy"})

    response = _post(client, payload, sign_payload(payload))

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "5"


def test_missing_class_is_acknowledged(
    client: TestClient, make_event, sign_payload, checkout_session
):
    payload = make_event("checkout.session.completed", checkout_session(class_id="NOPE"))

    response = _post(client, payload, sign_payload(payload))

    assert response.status_code == 200
    assert response.json()["status"] == "failed"


def test_exhausted_budget_returns_200_deferred(
    client: TestClient, make_event, sign_payload, charge_source, monkeypatch
):
    monkeypatch.setattr(
        webhook_dispatcher_module,
        "ProcessingDeadline",
        lambda _budget: ProcessingDeadline(budget_seconds=0),
    )
    charge_source.add_payout("po_1", ["pi_a"])
    payload = make_event("payout.paid", {"id": "po_1"})

    response = _post(client, payload, sign_payload(payload))

    assert response.status_code == 200
    assert response.json() == {"received": True, "event_type": "payout.paid", "status": "deferred"}
