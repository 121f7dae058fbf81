"""
Payout reconciliation.

Links transactions to the processor payout that settled them. The full set of
settled payment references is collected before anything is written, so a scan
that fails halfway leaves no partially linked payout behind.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.deadline import ProcessingDeadline
from ..core.exceptions import (
    DownstreamUnavailable,
    DuplicateEventError,
    EventValidationError,
    ProcessingDeferred,
    ReconciliationAbort,
)
from ..integrations.stripe_gateway import SettledChargeSource
from ..models.idempotency_record import IdempotencyKind
from ..models.transaction import Transaction
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.payout_charge_reference_repository import PayoutChargeReferenceRepository
from ..repositories.transaction_repository import TransactionRepository
from .base import BaseService
from .handler_result import HandlerResult
from .idempotency_ledger import IdempotencyLedger


@dataclass(frozen=True)
class PayoutMatchResult:
    payout_id: str
    matched_count: int
    references_found: int = 0
    already_reconciled: bool = False


def parse_arrival_date(value: Any) -> Optional[datetime]:
    """Stripe sends epoch seconds; replays from the ledger may carry ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class PayoutMatcher(BaseService):
    def __init__(
        self,
        db: Session,
        charge_source: Optional[SettledChargeSource] = None,
        page_size: Optional[int] = None,
    ) -> None:
        super().__init__(db)
        self.charge_source = charge_source
        self.page_size = min(page_size or settings.stripe_payout_page_size, 100)
        self.transactions = TransactionRepository(db)
        self.charge_references = PayoutChargeReferenceRepository(db)
        self.ledger = IdempotencyLedger(db)

    @BaseService.measure_operation("reconcile")
    def reconcile(
        self,
        payout_id: str,
        arrival_date: datetime,
        deadline: Optional[ProcessingDeadline] = None,
    ) -> PayoutMatchResult:
        """
        Link every transaction settled by ``payout_id``.

        A payout already carried by any transaction is reported as-is without
        rescanning.

        Raises:
            ReconciliationAbort: listing settled charges failed mid-scan
            ProcessingDeferred: the processing budget ran out mid-scan
        """
        existing = self.transactions.count_for_payout(payout_id)
        if existing:
            self.logger.info("Payout %s already linked to %s transactions", payout_id, existing)
            return PayoutMatchResult(
                payout_id=payout_id, matched_count=existing, already_reconciled=True
            )

        references = self.collect_payment_references(payout_id, deadline)
        if not references:
            self.logger.info("Payout %s settled no payment references", payout_id)
            return PayoutMatchResult(payout_id=payout_id, matched_count=0)

        self.charge_references.record(payout_id, references, arrival_date)
        self.transactions.link_payout(references, payout_id, arrival_date)
        matched = self.transactions.count_for_payout(payout_id)
        prometheus_metrics.record_payout_matches(matched)
        self.log_operation(
            "payout_reconciled",
            payout_id=payout_id,
            matched_count=matched,
            references_found=len(references),
        )
        return PayoutMatchResult(
            payout_id=payout_id, matched_count=matched, references_found=len(references)
        )

    def collect_payment_references(
        self, payout_id: str, deadline: Optional[ProcessingDeadline] = None
    ) -> set[str]:
        """Walk every page of settled charges; the cursor is the last item id seen."""
        if self.charge_source is None:
            raise ReconciliationAbort(payout_id, "No settled-charge source configured")

        references: set[str] = set()
        cursor: Optional[str] = None
        pages = 0
        while True:
            if deadline is not None and deadline.expired:
                raise ProcessingDeferred(
                    "stripe", f"Payout {payout_id} scan stopped after {pages} pages"
                )
            try:
                page = self.charge_source.list_settled_charges(
                    payout_id, starting_after=cursor, limit=self.page_size
                )
            except DownstreamUnavailable as exc:
                self.logger.error(
                    "Payout %s scan failed on page %s: %s", payout_id, pages + 1, exc.message
                )
                raise ReconciliationAbort(
                    payout_id, f"Settled charge listing failed: {exc.message}"
                ) from exc
            pages += 1
            references.update(
                item.payment_reference for item in page.items if item.payment_reference
            )
            if not page.has_more or not page.items:
                break
            cursor = page.items[-1].id

        self.logger.debug(
            "Payout %s: %s references across %s pages", payout_id, len(references), pages
        )
        return references

    def link_if_settled(self, transactions: Iterable[Transaction]) -> int:
        """
        Link freshly created transactions to a payout that was reconciled before them.

        Each reference is claimed on its settlement row. A payout scan racing
        this transaction either committed first, and the claim reads its
        payout, or waits on the row and then links the committed transaction.

        Returns:
            Number of transactions linked
        """
        linked = 0
        for transaction in transactions:
            if transaction.payout_id or not transaction.payment_reference:
                continue
            settled = self.charge_references.claim(transaction.payment_reference)
            if settled is None or settled.payout_id is None:
                continue
            transaction.payout_id = settled.payout_id
            transaction.payout_date = settled.payout_date
            linked += 1
        if linked:
            self.transactions.flush()
        return linked

    def handle_payout_paid(
        self, payout: dict[str, Any], deadline: Optional[ProcessingDeadline] = None
    ) -> HandlerResult:
        """Webhook entry point for a settled payout."""
        payout_id = payout.get("id")
        if not payout_id:
            raise EventValidationError("Payout event has no payout id", field="id")
        arrival_date = parse_arrival_date(payout.get("arrival_date")) or datetime.now(
            timezone.utc
        )

        reservation = self.ledger.check_and_reserve(payout_id, IdempotencyKind.PAYOUT)
        if reservation.already_processed:
            raise DuplicateEventError(payout_id, reservation.prior_outcome or {})

        result = self.reconcile(payout_id, arrival_date, deadline=deadline)
        outcome = asdict(result)
        outcome["payout_date"] = arrival_date.isoformat()
        self.ledger.record_outcome(reservation, outcome)
        return HandlerResult(outcome=outcome, idempotency_key=payout_id)
