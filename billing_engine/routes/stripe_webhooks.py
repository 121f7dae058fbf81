"""
Stripe webhook endpoint.

Mounted under /api/v1/webhooks/stripe. The response code tells Stripe whether
to redeliver: 2xx for anything that is settled (processed, duplicate, ignored,
deferred or failed on a business rule), 400 for bad signatures and malformed
payloads, 5xx when storage failed or a payout scan aborted.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ..api.dependencies import get_webhook_dispatcher
from ..core.exceptions import (
    AuthenticationError,
    EventInFlightError,
    EventValidationError,
    PersistenceError,
    ReconciliationAbort,
)
from ..services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

_IN_FLIGHT_RETRY_AFTER_SECONDS = "5"


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> JSONResponse:
    """Verify, record and apply one Stripe event."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        result = await asyncio.to_thread(dispatcher.handle, payload, signature)
    except AuthenticationError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except EventValidationError as exc:
        logger.warning("Malformed Stripe webhook: %s", exc.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except EventInFlightError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": exc.message, "code": exc.code},
            headers={"Retry-After": _IN_FLIGHT_RETRY_AFTER_SECONDS},
        )
    except (PersistenceError, ReconciliationAbort) as exc:
        raise exc.to_http_exception()

    headers = dict(result.headers)
    if result.replayed:
        headers["Idempotent-Replay"] = "true"
    return JSONResponse(content=result.body, headers=headers)
