"""FastAPI dependency providers for services and admin access."""

from functools import lru_cache
import secrets
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import UnauthorizedException
from ..database import get_db
from ..integrations.invoicing import LoggingInvoicingClient
from ..integrations.stripe_gateway import StripeGateway
from ..services.notification_service import NotificationService
from ..services.reconciliation_service import ReconciliationService
from ..services.webhook_dispatcher import WebhookDispatcher
from ..services.webhook_ledger_service import WebhookLedgerService


@lru_cache(maxsize=1)
def get_stripe_gateway() -> StripeGateway:
    """Singleton gateway; constructing one configures the global stripe client."""
    return StripeGateway()


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_webhook_dispatcher(
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    notifications: NotificationService = Depends(get_notification_service),
) -> WebhookDispatcher:
    """Wire the dispatcher with the Stripe gateway for every external capability."""
    return WebhookDispatcher(
        db,
        verifier=gateway,
        charge_source=gateway,
        customer_provider=gateway,
        notifications=notifications,
        invoicing=LoggingInvoicingClient(),
    )


def get_reconciliation_service(db: Session = Depends(get_db)) -> ReconciliationService:
    return ReconciliationService(db)


def get_webhook_ledger_service(db: Session = Depends(get_db)) -> WebhookLedgerService:
    return WebhookLedgerService(db)


def require_admin_token(x_admin_token: Optional[str] = Header(default=None)) -> None:
    """Reject admin calls without the shared admin token (constant-time comparison)."""
    expected = settings.admin_api_token.get_secret_value()
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise UnauthorizedException("Admin token missing or invalid", code="ADMIN_TOKEN_INVALID")
