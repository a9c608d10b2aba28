"""Dictionary-backed :class:`~tonerapp.services.stock_store.StockStore`.

Used by tooling and tests that do not need a database.  A single re-entrant
lock is held for the whole of an ``atomic()`` scope, which serializes every
read-modify-write; the state captured when the outermost scope opened is
restored if the block raises.
"""

from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Iterator

from tonerapp.models import RequestStatus
from tonerapp.services.records import RequestRecord, StockLevel, TransactionRecord


class MemoryStockStore:
    def __init__(self, *, default_min_stock_alert: int = 5):
        self.default_min_stock_alert = default_min_stock_alert
        self._lock = threading.RLock()
        self._depth = 0
        self._entries: dict[tuple[int, int], StockLevel] = {}
        self._transactions: list[TransactionRecord] = []
        self._requests: dict[int, RequestRecord] = {}
        self._units: set[int] = set()
        self._items: set[int] = set()
        self._entry_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)
        self._request_ids = itertools.count(1)

    @contextmanager
    def atomic(self) -> Iterator["MemoryStockStore"]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = None
            if outermost:
                snapshot = (
                    dict(self._entries),
                    list(self._transactions),
                    dict(self._requests),
                )
            self._depth += 1
            try:
                yield self
            except Exception:
                if outermost:
                    self._entries, self._transactions, self._requests = snapshot
                raise
            finally:
                self._depth -= 1

    def seed(
        self,
        unit_id: int,
        item_id: int,
        quantity: int = 0,
        *,
        min_stock_alert: int | None = None,
    ) -> StockLevel:
        """Create an entry directly, bypassing the audit trail (fixtures only)."""

        with self._lock:
            level = StockLevel(
                unit_id=unit_id,
                item_id=item_id,
                quantity=quantity,
                min_stock_alert=(
                    self.default_min_stock_alert if min_stock_alert is None else min_stock_alert
                ),
                entry_id=next(self._entry_ids),
            )
            self._units.add(unit_id)
            self._items.add(item_id)
            self._entries[(unit_id, item_id)] = level
            return level

    def register(self, *, unit_ids=(), item_ids=()) -> None:
        """Make units and items known without creating stock entries."""

        with self._lock:
            self._units.update(unit_ids)
            self._items.update(item_ids)

    def unit_exists(self, unit_id: int) -> bool:
        with self._lock:
            return unit_id in self._units

    def item_exists(self, item_id: int) -> bool:
        with self._lock:
            return item_id in self._items

    def read_quantity(self, unit_id: int, item_id: int, *, lock: bool = False) -> int:
        with self._lock:
            level = self._entries.get((unit_id, item_id))
            return level.quantity if level is not None else 0

    def write_quantity(self, unit_id: int, item_id: int, new_quantity: int) -> None:
        if new_quantity < 0:
            raise ValueError("Stock quantities cannot be negative.")
        with self._lock:
            key = (unit_id, item_id)
            level = self._entries.get(key)
            if level is None:
                self.seed(unit_id, item_id, new_quantity)
            else:
                self._entries[key] = replace(level, quantity=new_quantity)

    def append_transaction(
        self,
        *,
        type: str,
        quantity: int,
        reason: str | None,
        user_id: int | None,
        item_id: int,
        unit_id: int,
        reference: str | None = None,
    ) -> TransactionRecord:
        with self._lock:
            record = TransactionRecord(
                id=next(self._transaction_ids),
                type=type,
                quantity=quantity,
                reason=reason,
                user_id=user_id,
                item_id=item_id,
                unit_id=unit_id,
                timestamp=datetime.utcnow(),
                reference=reference,
            )
            self._transactions.append(record)
            return record

    def update_min_stock_alert(
        self, unit_id: int, item_id: int, threshold: int
    ) -> StockLevel | None:
        with self._lock:
            key = (unit_id, item_id)
            level = self._entries.get(key)
            if level is None:
                return None
            level = replace(level, min_stock_alert=threshold)
            self._entries[key] = level
            return level

    def list_entries(
        self, *, unit_id: int | None = None, item_id: int | None = None
    ) -> list[StockLevel]:
        with self._lock:
            levels = [
                level
                for level in self._entries.values()
                if level.is_active
                and (unit_id is None or level.unit_id == unit_id)
                and (item_id is None or level.item_id == item_id)
            ]
        return sorted(levels, key=lambda level: (level.unit_id, level.item_id))

    def list_transactions(
        self,
        *,
        limit: int,
        unit_id: int | None = None,
        item_id: int | None = None,
    ) -> list[TransactionRecord]:
        with self._lock:
            matches = [
                record
                for record in self._transactions
                if (unit_id is None or record.unit_id == unit_id)
                and (item_id is None or record.item_id == item_id)
            ]
        matches.sort(key=lambda record: (record.timestamp, record.id), reverse=True)
        return matches[:limit]

    def create_request(
        self,
        *,
        unit_id: int,
        item_id: int,
        quantity: int,
        sector_name: str | None,
        requestor_id: int | None,
    ) -> RequestRecord:
        with self._lock:
            record = RequestRecord(
                id=next(self._request_ids),
                status=RequestStatus.PENDING,
                quantity=quantity,
                sector_name=sector_name,
                requestor_id=requestor_id,
                item_id=item_id,
                unit_id=unit_id,
                timestamp=datetime.utcnow(),
            )
            self._requests[record.id] = record
            return record

    def read_request(self, request_id: int, *, lock: bool = False) -> RequestRecord | None:
        with self._lock:
            return self._requests.get(request_id)

    def write_request_status(self, request_id: int, status: str, actor_id: int | None) -> None:
        with self._lock:
            record = self._requests.get(request_id)
            if record is None:
                raise LookupError(f"Request {request_id} does not exist.")
            self._requests[request_id] = replace(
                record,
                status=status,
                decided_by=actor_id,
                decided_at=datetime.utcnow(),
            )

    def list_requests(
        self, *, unit_id: int | None = None, status: str | None = None
    ) -> list[RequestRecord]:
        with self._lock:
            matches = [
                record
                for record in self._requests.values()
                if (unit_id is None or record.unit_id == unit_id)
                and (status is None or record.status == status)
            ]
        matches.sort(key=lambda record: (record.timestamp, record.id), reverse=True)
        return matches

    def count_requests(self, *, status: str, unit_id: int | None = None) -> int:
        return len(self.list_requests(unit_id=unit_id, status=status))
