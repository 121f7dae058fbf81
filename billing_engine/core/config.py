# billing_engine/core/config.py
import logging
import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

load_dotenv()


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment name"
    )
    log_level: str = Field(default="INFO", description="Root log level")
    database_url: str = Field(
        default="sqlite:///./billing_engine.db",
        description="SQLAlchemy database URL (PostgreSQL in production)",
    )

    # Stripe
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret of the checkout/payout webhook endpoint",
    )
    stripe_webhook_secret_secondary: SecretStr = Field(
        default=SecretStr(""),
        description="Previous signing secret, accepted while a rotation is in progress",
    )
    stripe_api_timeout_seconds: float = Field(default=8.0, gt=0)
    stripe_max_network_retries: int = Field(default=1, ge=0, le=5)
    stripe_payout_page_size: int = Field(default=100, ge=1, le=100)
    stripe_signature_tolerance_seconds: int = Field(default=300, ge=1)

    # Webhook processing
    webhook_processing_budget_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Wall-clock budget for external calls made while handling one webhook",
    )

    # Invoicing
    invoice_number_floor: int = Field(
        default=100001, ge=1, description="First invoice number issued on an empty database"
    )

    # Email
    email_enabled: bool = Field(default=False)
    resend_api_key: SecretStr = Field(default=SecretStr(""))
    email_from_address: str = Field(default="enrollments@example.com")
    email_reply_to: str | None = Field(default=None)
    notification_max_retries: int = Field(default=3, ge=0, le=10)
    notification_backoff_base_seconds: float = Field(default=1.0, ge=0)

    # Admin
    admin_api_token: SecretStr = Field(
        default=SecretStr(""),
        description="Shared token required in the X-Admin-Token header of admin endpoints",
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = (value or "INFO").strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def webhook_secrets(self) -> list[str]:
        """Build list of webhook secrets to try in order."""
        secrets = []
        for candidate in (self.stripe_webhook_secret, self.stripe_webhook_secret_secondary):
            secret_str = candidate.get_secret_value() if candidate else ""
            if secret_str:
                secrets.append(secret_str)
        return secrets

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
