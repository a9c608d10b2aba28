"""Persistence collaborators for the stock ledger and request workflow.

The ledger only talks to a :class:`StockStore`.  :class:`SqlStockStore` is the
production backing on top of the Flask-SQLAlchemy session; the in-memory store
in :mod:`tonerapp.services.memory_store` implements the same protocol.

``atomic()`` scopes nest: inner scopes join the outermost one, which commits
when the block finishes and rolls everything back on any exception.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from tonerapp.extensions import db
from tonerapp.models import StockEntry, StockTransaction, SupplyItem, TonerRequest, Unit
from tonerapp.services.outcomes import PersistenceFailure
from tonerapp.services.records import RequestRecord, StockLevel, TransactionRecord


class StockStore(Protocol):
    def atomic(self): ...

    def unit_exists(self, unit_id: int) -> bool: ...

    def item_exists(self, item_id: int) -> bool: ...

    def read_quantity(self, unit_id: int, item_id: int, *, lock: bool = False) -> int: ...

    def write_quantity(self, unit_id: int, item_id: int, new_quantity: int) -> None: ...

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
    ) -> TransactionRecord: ...

    def update_min_stock_alert(self, unit_id: int, item_id: int, threshold: int) -> StockLevel | None: ...

    def list_entries(
        self, *, unit_id: int | None = None, item_id: int | None = None
    ) -> list[StockLevel]: ...

    def list_transactions(
        self,
        *,
        limit: int,
        unit_id: int | None = None,
        item_id: int | None = None,
    ) -> list[TransactionRecord]: ...

    def create_request(
        self,
        *,
        unit_id: int,
        item_id: int,
        quantity: int,
        sector_name: str | None,
        requestor_id: int | None,
    ) -> RequestRecord: ...

    def read_request(self, request_id: int, *, lock: bool = False) -> RequestRecord | None: ...

    def write_request_status(self, request_id: int, status: str, actor_id: int | None) -> None: ...

    def list_requests(
        self, *, unit_id: int | None = None, status: str | None = None
    ) -> list[RequestRecord]: ...

    def count_requests(self, *, status: str, unit_id: int | None = None) -> int: ...


def _level_from_entry(entry: StockEntry) -> StockLevel:
    return StockLevel(
        unit_id=entry.unit_id,
        item_id=entry.item_id,
        quantity=entry.quantity or 0,
        min_stock_alert=entry.min_stock_alert or 0,
        entry_id=entry.id,
        is_active=bool(entry.is_active),
    )


def _record_from_transaction(row: StockTransaction) -> TransactionRecord:
    return TransactionRecord(
        id=row.id,
        type=row.type,
        quantity=row.quantity,
        reason=row.reason,
        user_id=row.user_id,
        item_id=row.item_id,
        unit_id=row.unit_id,
        timestamp=row.timestamp,
        reference=row.reference,
    )


def _record_from_request(row: TonerRequest) -> RequestRecord:
    return RequestRecord(
        id=row.id,
        status=row.status,
        quantity=row.quantity,
        sector_name=row.sector_name,
        requestor_id=row.requestor_id,
        item_id=row.item_id,
        unit_id=row.unit_id,
        timestamp=row.timestamp,
        decided_by=row.decided_by,
        decided_at=row.decided_at,
    )


class SqlStockStore:
    def __init__(self, session=None, *, default_min_stock_alert: int = 5):
        self.session = session if session is not None else db.session
        self.default_min_stock_alert = default_min_stock_alert
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator["SqlStockStore"]:
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self
            if outermost:
                self.session.commit()
        except SQLAlchemyError as exc:
            if not outermost:
                raise
            self.session.rollback()
            raise PersistenceFailure(str(getattr(exc, "orig", None) or exc)) from exc
        except Exception:
            if outermost:
                self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def unit_exists(self, unit_id: int) -> bool:
        return self.session.execute(
            select(Unit.id).where(Unit.id == unit_id)
        ).first() is not None

    def item_exists(self, item_id: int) -> bool:
        return self.session.execute(
            select(SupplyItem.id).where(SupplyItem.id == item_id)
        ).first() is not None

    def _entry_query(self, unit_id: int, item_id: int):
        return select(StockEntry).where(
            StockEntry.unit_id == unit_id, StockEntry.item_id == item_id
        )

    def read_quantity(self, unit_id: int, item_id: int, *, lock: bool = False) -> int:
        statement = select(StockEntry.quantity).where(
            StockEntry.unit_id == unit_id, StockEntry.item_id == item_id
        )
        if lock:
            # Row lock for the rest of the transaction so concurrent debits
            # of the same entry queue behind each other (PostgreSQL).
            statement = statement.with_for_update()
        quantity = self.session.execute(statement).scalar_one_or_none()
        return int(quantity or 0)

    def write_quantity(self, unit_id: int, item_id: int, new_quantity: int) -> None:
        if new_quantity < 0:
            raise ValueError("Stock quantities cannot be negative.")

        entry = self.session.execute(self._entry_query(unit_id, item_id)).scalar_one_or_none()
        if entry is None:
            entry = StockEntry(
                unit_id=unit_id,
                item_id=item_id,
                quantity=new_quantity,
                min_stock_alert=self.default_min_stock_alert,
            )
            self.session.add(entry)
        else:
            entry.quantity = new_quantity
        self.session.flush()

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
        row = StockTransaction(
            type=type,
            quantity=quantity,
            reason=reason,
            user_id=user_id,
            item_id=item_id,
            unit_id=unit_id,
            reference=reference,
            timestamp=datetime.utcnow(),
        )
        self.session.add(row)
        self.session.flush()
        return _record_from_transaction(row)

    def update_min_stock_alert(
        self, unit_id: int, item_id: int, threshold: int
    ) -> StockLevel | None:
        entry = self.session.execute(self._entry_query(unit_id, item_id)).scalar_one_or_none()
        if entry is None:
            return None
        entry.min_stock_alert = threshold
        self.session.flush()
        return _level_from_entry(entry)

    def list_entries(
        self, *, unit_id: int | None = None, item_id: int | None = None
    ) -> list[StockLevel]:
        statement = select(StockEntry).where(StockEntry.is_active.is_(True))
        if unit_id is not None:
            statement = statement.where(StockEntry.unit_id == unit_id)
        if item_id is not None:
            statement = statement.where(StockEntry.item_id == item_id)
        statement = statement.order_by(StockEntry.unit_id, StockEntry.item_id)
        return [_level_from_entry(entry) for entry in self.session.execute(statement).scalars()]

    def list_transactions(
        self,
        *,
        limit: int,
        unit_id: int | None = None,
        item_id: int | None = None,
    ) -> list[TransactionRecord]:
        statement = select(StockTransaction)
        if unit_id is not None:
            statement = statement.where(StockTransaction.unit_id == unit_id)
        if item_id is not None:
            statement = statement.where(StockTransaction.item_id == item_id)
        statement = statement.order_by(
            StockTransaction.timestamp.desc(), StockTransaction.id.desc()
        ).limit(limit)
        return [_record_from_transaction(row) for row in self.session.execute(statement).scalars()]

    def create_request(
        self,
        *,
        unit_id: int,
        item_id: int,
        quantity: int,
        sector_name: str | None,
        requestor_id: int | None,
    ) -> RequestRecord:
        row = TonerRequest(
            unit_id=unit_id,
            item_id=item_id,
            quantity=quantity,
            sector_name=sector_name,
            requestor_id=requestor_id,
            timestamp=datetime.utcnow(),
        )
        self.session.add(row)
        self.session.flush()
        return _record_from_request(row)

    def read_request(self, request_id: int, *, lock: bool = False) -> RequestRecord | None:
        statement = select(TonerRequest).where(TonerRequest.id == request_id)
        if lock:
            statement = statement.with_for_update().execution_options(populate_existing=True)
        row = self.session.execute(statement).scalar_one_or_none()
        if row is None:
            return None
        return _record_from_request(row)

    def write_request_status(self, request_id: int, status: str, actor_id: int | None) -> None:
        row = self.session.get(TonerRequest, request_id)
        if row is None:
            raise LookupError(f"Request {request_id} does not exist.")
        row.status = status
        row.decided_by = actor_id
        row.decided_at = datetime.utcnow()
        self.session.flush()

    def list_requests(
        self, *, unit_id: int | None = None, status: str | None = None
    ) -> list[RequestRecord]:
        statement = select(TonerRequest)
        if unit_id is not None:
            statement = statement.where(TonerRequest.unit_id == unit_id)
        if status is not None:
            statement = statement.where(TonerRequest.status == status)
        statement = statement.order_by(TonerRequest.timestamp.desc(), TonerRequest.id.desc())
        return [_record_from_request(row) for row in self.session.execute(statement).scalars()]

    def count_requests(self, *, status: str, unit_id: int | None = None) -> int:
        statement = select(func.count(TonerRequest.id)).where(TonerRequest.status == status)
        if unit_id is not None:
            statement = statement.where(TonerRequest.unit_id == unit_id)
        return int(self.session.execute(statement).scalar() or 0)
