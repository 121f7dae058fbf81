"""
Admin endpoints for reconciliation and operational follow-up.

Mounted under /api/v1/admin. Every route requires the X-Admin-Token header.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..api.dependencies import (
    get_notification_service,
    get_reconciliation_service,
    get_webhook_dispatcher,
    get_webhook_ledger_service,
    require_admin_token,
)
from ..schemas.notifications import NotificationLogListResponse, NotificationLogResponse
from ..schemas.transactions import (
    PayoutGroupResponse,
    PayoutReconcileResponse,
    TransactionResponse,
    TransactionStatusUpdate,
)
from ..schemas.webhook_events import (
    WebhookEventListResponse,
    WebhookEventResponse,
    WebhookReplayResponse,
)
from ..services.notification_service import NotificationService
from ..services.reconciliation_service import ReconciliationService
from ..services.webhook_dispatcher import WebhookDispatcher
from ..services.webhook_ledger_service import WebhookLedgerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin_token)])


@router.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    enrollment_id: Optional[str] = Query(default=None),
    payout_id: Optional[str] = Query(default=None),
    unlinked: bool = Query(default=False, description="Only rows not yet linked to a payout"),
    limit: int = Query(default=100, ge=1, le=1000),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> list[TransactionResponse]:
    transactions = service.list_transactions(
        enrollment_id=enrollment_id, payout_id=payout_id, unlinked_only=unlinked, limit=limit
    )
    return [TransactionResponse.model_validate(t) for t in transactions]


@router.post("/transactions/{transaction_id}/reconcile", response_model=TransactionResponse)
def reconcile_transaction(
    transaction_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> TransactionResponse:
    """Mark one payout-linked transaction as reconciled."""
    return TransactionResponse.model_validate(service.reconcile_transaction(transaction_id))


@router.patch("/transactions/{transaction_id}/status", response_model=TransactionResponse)
def update_transaction_status(
    transaction_id: str,
    payload: TransactionStatusUpdate,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> TransactionResponse:
    transaction = service.override_status(transaction_id, payload.status)
    return TransactionResponse.model_validate(transaction)


@router.get("/payouts", response_model=list[PayoutGroupResponse])
def list_payouts(
    limit: int = Query(default=1000, ge=1, le=10_000),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> list[PayoutGroupResponse]:
    """Linked transactions grouped by payout."""
    return [PayoutGroupResponse.model_validate(group) for group in service.payout_groups(limit)]


@router.post("/payouts/{payout_id}/reconcile", response_model=PayoutReconcileResponse)
def reconcile_payout(
    payout_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> PayoutReconcileResponse:
    transactions = service.reconcile_payout(payout_id)
    return PayoutReconcileResponse(
        payout_id=payout_id,
        reconciled_count=sum(1 for t in transactions if t.reconciled),
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
    )


@router.get("/webhook-events", response_model=WebhookEventListResponse)
def list_webhook_events(
    status: Optional[str] = Query(default=None),
    event_type: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    ledger: WebhookLedgerService = Depends(get_webhook_ledger_service),
) -> WebhookEventListResponse:
    events = ledger.list_events(status=status, event_type=event_type, limit=limit)
    return WebhookEventListResponse(
        events=[WebhookEventResponse.model_validate(e) for e in events],
        total=len(events),
    )


@router.post("/webhook-events/{webhook_event_id}/replay", response_model=WebhookReplayResponse)
async def replay_webhook_event(
    webhook_event_id: str,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    ledger: WebhookLedgerService = Depends(get_webhook_ledger_service),
) -> WebhookReplayResponse:
    """Re-run a stored event through its handler; duplicates replay the stored outcome."""
    result = await asyncio.to_thread(dispatcher.replay, webhook_event_id)
    event = await asyncio.to_thread(ledger.get_event, webhook_event_id)
    logger.info("Admin replay of webhook %s finished: %s", webhook_event_id, result.status)
    return WebhookReplayResponse(
        event=WebhookEventResponse.model_validate(event),
        status=result.status,
        result=result.body,
    )


@router.get("/notification-logs", response_model=NotificationLogListResponse)
def list_notification_logs(
    category: Optional[str] = Query(default=None),
    success: Optional[bool] = Query(default=None),
    enrollment_id: Optional[str] = Query(default=None),
    student_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    include_metrics: bool = Query(default=True),
    notifications: NotificationService = Depends(get_notification_service),
) -> NotificationLogListResponse:
    logs = notifications.list_logs(
        category=category,
        success=success,
        enrollment_id=enrollment_id,
        student_id=student_id,
        limit=limit,
        offset=offset,
    )
    return NotificationLogListResponse(
        logs=[NotificationLogResponse.model_validate(log) for log in logs],
        metrics=notifications.delivery_metrics() if include_metrics else None,
    )
