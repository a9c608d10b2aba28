"""Single entry point for every change to per-unit stock quantities.

Each committed mutation writes the new quantity and appends exactly one
audit transaction in the same persistence transaction.  A mutation that
would take a quantity below zero is refused without touching either.
"""

from __future__ import annotations

import logging

from tonerapp.models import TransactionType
from tonerapp.services.outcomes import Outcome, OutcomeError
from tonerapp.services.records import StockLevel, TransactionRecord
from tonerapp.services.stock_store import StockStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def _delta_matches_type(delta: int, transaction_type: str) -> bool:
    if transaction_type == TransactionType.ADD:
        return delta > 0
    if transaction_type == TransactionType.REMOVE:
        return delta < 0
    if transaction_type in (TransactionType.ADJUSTMENT, TransactionType.TRANSFER):
        return delta != 0
    return False


def unknown_reference(store: StockStore, unit_id: int, item_id: int) -> Outcome | None:
    """Return a failure when the unit or item is not in the catalogue."""

    if not store.unit_exists(unit_id):
        return Outcome.failure(OutcomeError.UNKNOWN_UNIT, f"Unit {unit_id} does not exist.")
    if not store.item_exists(item_id):
        return Outcome.failure(OutcomeError.UNKNOWN_ITEM, f"Item {item_id} does not exist.")
    return None


def type_for_delta(delta: int) -> str:
    return TransactionType.ADD if delta > 0 else TransactionType.REMOVE


class StockLedger:
    def __init__(self, store: StockStore, *, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.store = store
        self.history_limit = history_limit

    def apply_delta(
        self,
        unit_id: int,
        item_id: int,
        delta: int,
        actor_id: int | None,
        transaction_type: str,
        reason: str | None,
        *,
        reference: str | None = None,
    ) -> Outcome:
        """Apply a signed quantity change to one (unit, item) entry.

        Succeeds with the appended :class:`TransactionRecord` as the value.
        Fails with ``INVALID_DELTA`` for a zero delta or a type whose sign does
        not match, and with ``INSUFFICIENT_STOCK`` when the result would be
        negative.  An id missing from the catalogue fails with ``UNKNOWN_UNIT``
        or ``UNKNOWN_ITEM``.  Storage errors raise
        :class:`~tonerapp.services.outcomes.PersistenceFailure`.
        """

        if isinstance(delta, bool) or not isinstance(delta, int):
            return Outcome.failure(OutcomeError.INVALID_DELTA, "Quantity change must be a whole number.")
        if not _delta_matches_type(delta, transaction_type):
            return Outcome.failure(
                OutcomeError.INVALID_DELTA,
                f"A {transaction_type} movement cannot change stock by {delta}.",
            )

        with self.store.atomic():
            missing = unknown_reference(self.store, unit_id, item_id)
            if missing is not None:
                return missing

            current = self.store.read_quantity(unit_id, item_id, lock=True)
            new_quantity = current + delta
            if new_quantity < 0:
                logger.warning(
                    "Refused %s of %s for unit=%s item=%s: only %s on hand",
                    transaction_type,
                    abs(delta),
                    unit_id,
                    item_id,
                    current,
                )
                return Outcome.failure(
                    OutcomeError.INSUFFICIENT_STOCK,
                    f"Not enough stock. Available {current}, requested {abs(delta)}.",
                )

            self.store.write_quantity(unit_id, item_id, new_quantity)
            record = self.store.append_transaction(
                type=transaction_type,
                quantity=abs(delta),
                reason=reason,
                user_id=actor_id,
                item_id=item_id,
                unit_id=unit_id,
                reference=reference,
            )

        logger.info(
            "%s %s unit=%s item=%s by user=%s (%s -> %s)",
            transaction_type,
            abs(delta),
            unit_id,
            item_id,
            actor_id,
            current,
            new_quantity,
        )
        return Outcome.success(record, message=f"Stock updated to {new_quantity}.")

    def quantity(self, unit_id: int, item_id: int) -> int:
        return self.store.read_quantity(unit_id, item_id)

    def entries(self, unit_id: int | None = None) -> list[StockLevel]:
        return self.store.list_entries(unit_id=unit_id)

    def low_stock(self, unit_id: int | None = None) -> list[StockLevel]:
        return [level for level in self.entries(unit_id) if level.is_low]

    def recent_transactions(
        self,
        limit: int | None = None,
        *,
        unit_id: int | None = None,
        item_id: int | None = None,
    ) -> list[TransactionRecord]:
        bounded = self.history_limit if limit is None else max(0, min(limit, self.history_limit))
        if bounded == 0:
            return []
        return self.store.list_transactions(limit=bounded, unit_id=unit_id, item_id=item_id)

    def set_min_stock_alert(self, unit_id: int, item_id: int, threshold: int) -> StockLevel | None:
        # The alert threshold is not a quantity, so no transaction is recorded.
        if threshold < 0:
            raise ValueError("The low-stock threshold cannot be negative.")
        with self.store.atomic():
            return self.store.update_min_stock_alert(unit_id, item_id, threshold)
