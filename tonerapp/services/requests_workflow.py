"""Supply request lifecycle: PENDING, then APPROVED or REJECTED exactly once."""

from __future__ import annotations

import logging

from tonerapp.models import RequestStatus, TransactionType
from tonerapp.services.outcomes import Outcome, OutcomeError
from tonerapp.services.records import RequestRecord
from tonerapp.services.stock_ledger import StockLedger, unknown_reference
from tonerapp.services.stock_store import StockStore

logger = logging.getLogger(__name__)

DECISIONS = (RequestStatus.APPROVED, RequestStatus.REJECTED)


class RequestWorkflow:
    def __init__(self, store: StockStore, ledger: StockLedger):
        self.store = store
        self.ledger = ledger

    def submit(
        self,
        unit_id: int,
        item_id: int,
        quantity: int,
        sector_name: str | None,
        requestor_id: int | None,
    ) -> Outcome:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return Outcome.failure(
                OutcomeError.INVALID_DELTA, "Requested quantity must be greater than zero."
            )

        with self.store.atomic():
            missing = unknown_reference(self.store, unit_id, item_id)
            if missing is not None:
                return missing

            record = self.store.create_request(
                unit_id=unit_id,
                item_id=item_id,
                quantity=quantity,
                sector_name=(sector_name or "").strip() or None,
                requestor_id=requestor_id,
            )

        logger.info(
            "Request %s submitted: %s of item=%s for unit=%s by user=%s",
            record.id,
            quantity,
            item_id,
            unit_id,
            requestor_id,
        )
        return Outcome.success(record, message="Request submitted for approval.")

    def decide(self, request_id: int, decision: str, actor_id: int | None) -> Outcome:
        """Approve or reject a pending request.

        Callers must hold the ``decide_requests`` capability; the check happens
        at the boundary before this is invoked.  Approval debits the requested
        quantity through the ledger first and the request only becomes
        APPROVED if that debit committed; otherwise it stays PENDING.
        """

        normalized = (decision or "").strip().upper()
        if normalized not in DECISIONS:
            return Outcome.failure(
                OutcomeError.INVALID_DECISION, "Decision must be APPROVED or REJECTED."
            )

        with self.store.atomic():
            request = self.store.read_request(request_id, lock=True)
            if request is None:
                return Outcome.failure(
                    OutcomeError.REQUEST_NOT_FOUND, f"Request {request_id} does not exist."
                )
            if request.status in RequestStatus.TERMINAL_STATES:
                logger.warning(
                    "Ignored %s for request %s: already %s", normalized, request_id, request.status
                )
                return Outcome.failure(
                    OutcomeError.ALREADY_DECIDED,
                    f"Request {request_id} was already {request.status.lower()}.",
                )

            if normalized == RequestStatus.APPROVED:
                debit = self.ledger.apply_delta(
                    request.unit_id,
                    request.item_id,
                    -request.quantity,
                    actor_id,
                    TransactionType.REMOVE,
                    f"request from {request.sector_name or 'unit'} approved",
                )
                if not debit.ok:
                    return debit

            self.store.write_request_status(request_id, normalized, actor_id)
            updated = self.store.read_request(request_id)

        logger.info("Request %s %s by user=%s", request_id, normalized.lower(), actor_id)
        return Outcome.success(updated, message=f"Request {normalized.lower()}.")

    def get(self, request_id: int) -> RequestRecord | None:
        return self.store.read_request(request_id)

    def list_requests(
        self, *, unit_id: int | None = None, status: str | None = None
    ) -> list[RequestRecord]:
        return self.store.list_requests(unit_id=unit_id, status=status)

    def pending_count(self, unit_id: int | None = None) -> int:
        return self.store.count_requests(status=RequestStatus.PENDING, unit_id=unit_id)
