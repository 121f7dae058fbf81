# tests/conftest.py
"""
Pytest configuration for the billing engine.

Settings are read at import time, so the environment is pinned before any
billing_engine import. Every test runs against a fresh in-memory SQLite
database; Stripe and Resend are replaced by in-memory fakes.
"""

import os

# Set test configuration BEFORE any billing_engine imports
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_primary"
os.environ["STRIPE_WEBHOOK_SECRET_SECONDARY"] = ""
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["EMAIL_ENABLED"] = "false"

# Mock Resend globally so no test can send a real email
import unittest.mock

global_resend_mock = unittest.mock.patch("resend.Emails.send")
mocked_send = global_resend_mock.start()
mocked_send.return_value = {"id": "test-email-id"}

from datetime import date
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from billing_engine.api.dependencies import get_webhook_dispatcher
from billing_engine.core.exceptions import DownstreamUnavailable
from billing_engine.database import Base, get_db
from billing_engine.integrations.stripe_gateway import (
    SettledCharge,
    SettledChargePage,
    StripeGateway,
)
from billing_engine.main import app
import billing_engine.models  # noqa: F401
from billing_engine.models.course_class import CourseClass
from billing_engine.services.notification_service import NotificationService
from billing_engine.services.webhook_dispatcher import WebhookDispatcher

WEBHOOK_SECRET = "whsec_test_primary"
ADMIN_TOKEN = "test-admin-token"


# ============================================================================
# Fakes for external systems
# ============================================================================


class FakeChargeSource:
    """Settled charges per payout, served in pages like the balance transaction API."""

    def __init__(self) -> None:
        self.payouts: dict[str, list[SettledCharge]] = {}
        self.calls: list[dict[str, Any]] = []
        self.fail_on_page: Optional[int] = None

    def add_payout(self, payout_id: str, references: list[Optional[str]]) -> None:
        self.payouts[payout_id] = [
            SettledCharge(id=f"txn_{payout_id}_{index}", payment_reference=ref, amount=1000)
            for index, ref in enumerate(references)
        ]

    def list_settled_charges(
        self, payout_id: str, *, starting_after: Optional[str] = None, limit: int = 100
    ) -> SettledChargePage:
        self.calls.append({"payout_id": payout_id, "starting_after": starting_after})
        if self.fail_on_page is not None and len(self.calls) >= self.fail_on_page:
            raise DownstreamUnavailable("stripe", "connection reset")
        items = self.payouts.get(payout_id, [])
        start = 0
        if starting_after:
            start = next(i for i, item in enumerate(items) if item.id == starting_after) + 1
        page = items[start : start + limit]
        return SettledChargePage(items=page, has_more=start + limit < len(items))


class FakeCustomerProvider:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def create_customer(
        self,
        *,
        email: str,
        name: Optional[str],
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        self.calls.append({"email": email, "name": name, "idempotency_key": idempotency_key})
        if self.error is not None:
            raise self.error
        return f"cus_{len(self.calls)}"


class FakeEmailSender:
    def __init__(self, failures: Optional[list[Exception]] = None) -> None:
        self.failures = list(failures or [])
        self.sent: list[dict[str, Any]] = []

    def send(self, *, to, subject, html, text=None, reply_to=None) -> Optional[str]:
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return f"msg_{len(self.sent)}"


class RecordingInvoicingClient:
    def __init__(self) -> None:
        self.requests: list[Any] = []

    def create_invoice(self, request) -> Optional[str]:
        self.requests.append(request)
        return None


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db(engine) -> Session:
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Catalog fixtures
# ============================================================================


@pytest.fixture
def course_class(db: Session) -> CourseClass:
    item = CourseClass(
        class_id="CLS1",
        class_name="Intro to Data Analysis",
        course_code="DA101",
        product_type="course",
        registration_fee=15000,
        price=0,
        class_start_date=date(2026, 11, 2),
    )
    db.add(item)
    db.commit()
    return item


@pytest.fixture
def program_class(db: Session) -> CourseClass:
    item = CourseClass(
        class_id="CLS2",
        class_name="Full Stack Engineering Program",
        course_code="FSE200",
        product_type="program",
        registration_fee=25000,
        price=400000,
        class_start_date=date(2026, 3, 1),
    )
    db.add(item)
    db.commit()
    return item


# ============================================================================
# External system fakes
# ============================================================================


@pytest.fixture
def charge_source() -> FakeChargeSource:
    return FakeChargeSource()


@pytest.fixture
def customer_provider() -> FakeCustomerProvider:
    return FakeCustomerProvider()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def invoicing() -> RecordingInvoicingClient:
    return RecordingInvoicingClient()


@pytest.fixture
def notification_service(db: Session, email_sender: FakeEmailSender) -> NotificationService:
    return NotificationService(
        db, email_sender, enabled=True, max_retries=3, backoff_base_seconds=0, sleep=lambda _: None
    )


@pytest.fixture
def gateway() -> StripeGateway:
    return StripeGateway(api_key="", webhook_secrets=[WEBHOOK_SECRET])


@pytest.fixture
def dispatcher(
    db: Session,
    gateway: StripeGateway,
    charge_source: FakeChargeSource,
    customer_provider: FakeCustomerProvider,
    notification_service: NotificationService,
    invoicing: RecordingInvoicingClient,
) -> WebhookDispatcher:
    return WebhookDispatcher(
        db,
        verifier=gateway,
        charge_source=charge_source,
        customer_provider=customer_provider,
        notifications=notification_service,
        invoicing=invoicing,
        budget_seconds=20.0,
    )


# ============================================================================
# Webhook payload helpers
# ============================================================================


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def sign_payload() -> Callable[..., str]:
    return _sign


@pytest.fixture
def make_event() -> Callable[..., bytes]:
    def _make(event_type: str, data_object: dict[str, Any], event_id: str = "evt_1") -> bytes:
        event = {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": data_object},
        }
        return json.dumps(event).encode()

    return _make


@pytest.fixture
def checkout_session() -> Callable[..., dict[str, Any]]:
    def _session(
        payment_intent: str = "pi_1",
        class_id: str = "CLS1",
        email: str = "Ada@Example.com",
        amount_total: int = 15000,
        **overrides: Any,
    ) -> dict[str, Any]:
        session = {
            "id": f"cs_{payment_intent}",
            "object": "checkout.session",
            "payment_intent": payment_intent,
            "payment_status": "paid",
            "amount_total": amount_total,
            "created": 1767225600,
            "customer": None,
            "customer_details": {"email": email, "name": "Ada Lovelace"},
            "metadata": {"class_id": class_id, "full_name": "Ada Lovelace"},
        }
        session.update(overrides)
        return session

    return _session


# ============================================================================
# HTTP client
# ============================================================================


@pytest.fixture
def client(db: Session, dispatcher: WebhookDispatcher) -> TestClient:
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_webhook_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}
