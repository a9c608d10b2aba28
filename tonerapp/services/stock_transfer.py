from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from tonerapp.models import TransactionType
from tonerapp.services.outcomes import Outcome, OutcomeError
from tonerapp.services.records import TransactionRecord
from tonerapp.services.stock_ledger import StockLedger, unknown_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferReceipt:
    reference: str
    debit: TransactionRecord
    credit: TransactionRecord

    def to_dict(self) -> dict[str, object]:
        return {
            "reference": self.reference,
            "debit": self.debit.to_dict(),
            "credit": self.credit.to_dict(),
        }


class _TransferAborted(Exception):
    def __init__(self, outcome: Outcome):
        super().__init__(outcome.message)
        self.outcome = outcome


def new_transfer_reference() -> str:
    return f"TRF-{uuid.uuid4().hex[:12].upper()}"


class TransferCoordinator:
    def __init__(self, ledger: StockLedger):
        self.ledger = ledger

    def transfer(
        self,
        source_unit_id: int,
        dest_unit_id: int,
        item_id: int,
        quantity: int,
        actor_id: int | None,
    ) -> Outcome:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            return Outcome.failure(
                OutcomeError.INVALID_TRANSFER, "Transfer quantities must be greater than zero."
            )
        if source_unit_id == dest_unit_id:
            return Outcome.failure(
                OutcomeError.INVALID_TRANSFER, "Transfer units must be different."
            )
        for unit_id in (source_unit_id, dest_unit_id):
            missing = unknown_reference(self.ledger.store, unit_id, item_id)
            if missing is not None:
                return missing

        reference = new_transfer_reference()
        try:
            # Both legs share one persistence transaction; any failure after
            # the debit rolls the debit back with it.
            with self.ledger.store.atomic():
                debit = self.ledger.apply_delta(
                    source_unit_id,
                    item_id,
                    -quantity,
                    actor_id,
                    TransactionType.REMOVE,
                    f"transfer to {dest_unit_id}",
                    reference=reference,
                )
                if not debit.ok:
                    return debit

                credit = self.ledger.apply_delta(
                    dest_unit_id,
                    item_id,
                    quantity,
                    actor_id,
                    TransactionType.ADD,
                    f"transfer from {source_unit_id}",
                    reference=reference,
                )
                if not credit.ok:
                    raise _TransferAborted(credit)
        except _TransferAborted as aborted:
            logger.warning("Transfer %s rolled back: %s", reference, aborted.outcome.message)
            return aborted.outcome

        logger.info(
            "Transfer %s moved %s of item=%s from unit=%s to unit=%s by user=%s",
            reference,
            quantity,
            item_id,
            source_unit_id,
            dest_unit_id,
            actor_id,
        )
        return Outcome.success(
            TransferReceipt(reference=reference, debit=debit.value, credit=credit.value),
            message=f"Moved {quantity} to unit {dest_unit_id}.",
        )
