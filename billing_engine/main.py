# billing_engine/main.py
"""
FastAPI application for the billing engine.

Routers are mounted under /api/v1; /metrics stays at the root for scrapers.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from . import __version__
from .core.config import settings
from .errors import register_error_handlers
from .routes import admin, health, stripe_webhooks

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting billing engine (%s, %s)", __version__, settings.environment)
    if not settings.webhook_secrets:
        logger.warning("No Stripe webhook secret configured; every webhook will be rejected")
    if not settings.admin_api_token.get_secret_value():
        logger.warning("ADMIN_API_TOKEN is not set; admin endpoints are disabled")
    if settings.is_production and settings.database_url.startswith("sqlite"):
        logger.error("Production is configured with SQLite; concurrent deliveries are unsafe")
    yield
    logger.info("Billing engine shutting down")


def create_app() -> FastAPI:
    application = FastAPI(
        title="Billing Engine",
        description="Payment webhook ingestion, billing schedules and payout reconciliation",
        version=__version__,
        lifespan=app_lifespan,
    )
    register_error_handlers(application)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(health.router)
    api_v1.include_router(stripe_webhooks.router, prefix="/webhooks")
    api_v1.include_router(admin.router, prefix="/admin")
    application.include_router(api_v1)
    application.include_router(health.metrics_router)
    return application


app = create_app()
