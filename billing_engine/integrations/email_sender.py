"""Resend-backed email delivery."""

import logging
from typing import Any, Optional, Protocol

import resend

from ..core.config import settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        """Deliver one email; returns the provider message id."""
        ...


class ResendEmailSender:
    """Sends through the Resend API. Exceptions propagate for retry classification."""

    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None) -> None:
        key = api_key if api_key is not None else settings.resend_api_key.get_secret_value()
        if key:
            resend.api_key = key
        self.from_address = from_address or settings.email_from_address

    def send(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> Optional[str]:
        email_data: dict[str, Any] = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if text:
            email_data["text"] = text
        if reply_to:
            email_data["reply_to"] = reply_to

        response = resend.Emails.send(email_data)
        if isinstance(response, dict):
            return response.get("id")
        return getattr(response, "id", None)
