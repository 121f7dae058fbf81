"""
Stripe access for the billing engine.

The capability protocols let the reconciliation core run against in-memory
fakes; StripeGateway is the production implementation of all of them.
"""

from dataclasses import dataclass
import logging
from typing import Any, Optional, Protocol, Sequence

import stripe

from ..core.config import settings
from ..core.exceptions import AuthenticationError, DownstreamUnavailable, EventValidationError

logger = logging.getLogger(__name__)

# Balance transaction types that represent money collected from a customer
_CHARGE_TRANSACTION_TYPES = {"charge", "payment"}


@dataclass(frozen=True)
class SettledCharge:
    """One balance transaction inside a payout."""

    id: str
    payment_reference: Optional[str]
    amount: Optional[int] = None


@dataclass(frozen=True)
class SettledChargePage:
    items: list[SettledCharge]
    has_more: bool


class WebhookVerifier(Protocol):
    def verify(self, payload: bytes, signature: str) -> None: ...


class SettledChargeSource(Protocol):
    def list_settled_charges(
        self, payout_id: str, *, starting_after: Optional[str] = None, limit: int = 100
    ) -> SettledChargePage: ...


class BillingCustomerProvider(Protocol):
    def create_customer(
        self,
        *,
        email: str,
        name: Optional[str],
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str: ...


def _field(obj: Any, name: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def extract_payment_reference(balance_transaction: Any) -> Optional[str]:
    """
    Originating payment reference of a settled balance transaction.

    The charge's payment intent is preferred; legacy charges without one fall
    back to the charge id. Non-charge activity (fees, refunds, transfers) yields None.
    """
    if _field(balance_transaction, "type") not in _CHARGE_TRANSACTION_TYPES:
        return None
    source = _field(balance_transaction, "source")
    if source is None:
        return None
    if isinstance(source, str):
        return source
    payment_intent = _field(source, "payment_intent")
    if isinstance(payment_intent, str):
        return payment_intent
    if payment_intent is not None:
        return _field(payment_intent, "id")
    return _field(source, "id")


class StripeGateway:
    """Stripe-backed webhook verifier, settled-charge source and customer provider."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        webhook_secrets: Optional[Sequence[str]] = None,
        timeout_seconds: Optional[float] = None,
        max_network_retries: Optional[int] = None,
        signature_tolerance: Optional[int] = None,
    ) -> None:
        self.webhook_secrets = list(
            webhook_secrets if webhook_secrets is not None else settings.webhook_secrets
        )
        self.signature_tolerance = (
            signature_tolerance or settings.stripe_signature_tolerance_seconds
        )
        key = api_key if api_key is not None else settings.stripe_secret_key.get_secret_value()
        if key:
            stripe.api_key = key
        # Bounded timeout and retries keep Stripe calls from pinning the webhook request
        stripe.default_http_client = stripe.RequestsClient(
            timeout=timeout_seconds or settings.stripe_api_timeout_seconds
        )
        stripe.max_network_retries = (
            max_network_retries
            if max_network_retries is not None
            else settings.stripe_max_network_retries
        )

    def verify(self, payload: bytes, signature: str) -> None:
        """
        Verify the Stripe-Signature header over the exact request bytes.

        Every configured secret is tried so secrets can be rotated.

        Raises:
            AuthenticationError: no secret configured or no secret matches
            EventValidationError: signature matches but the body is not JSON
        """
        if not self.webhook_secrets:
            logger.error("Stripe webhook received but no webhook secret is configured")
            raise AuthenticationError("Webhook secret not configured")

        for secret in self.webhook_secrets:
            try:
                stripe.Webhook.construct_event(
                    payload, signature, secret, tolerance=self.signature_tolerance
                )
                return
            except stripe.SignatureVerificationError:
                continue
            except ValueError as exc:
                raise EventValidationError(f"Malformed webhook payload: {exc}") from exc

        logger.warning("Invalid Stripe webhook signature")
        raise AuthenticationError()

    def list_settled_charges(
        self, payout_id: str, *, starting_after: Optional[str] = None, limit: int = 100
    ) -> SettledChargePage:
        params: dict[str, Any] = {
            "payout": payout_id,
            "limit": min(limit, 100),
            "expand": ["data.source"],
        }
        if starting_after:
            params["starting_after"] = starting_after
        try:
            result = stripe.BalanceTransaction.list(**params)
        except stripe.StripeError as exc:
            raise DownstreamUnavailable(
                "stripe", f"Balance transaction listing failed: {exc}"
            ) from exc

        items = [
            SettledCharge(
                id=_field(item, "id"),
                payment_reference=extract_payment_reference(item),
                amount=_field(item, "amount"),
            )
            for item in (_field(result, "data") or [])
        ]
        return SettledChargePage(items=items, has_more=bool(_field(result, "has_more")))

    def create_customer(
        self,
        *,
        email: str,
        name: Optional[str],
        metadata: dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> str:
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name or None,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise DownstreamUnavailable("stripe", f"Customer creation failed: {exc}") from exc
        return str(_field(customer, "id"))
