from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime


@dataclass(frozen=True)
class StockLevel:
    unit_id: int
    item_id: int
    quantity: int
    min_stock_alert: int
    entry_id: int | None = None
    is_active: bool = True

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.min_stock_alert

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["is_low"] = self.is_low
        return payload


@dataclass(frozen=True)
class TransactionRecord:
    id: int | None
    type: str
    quantity: int
    reason: str | None
    user_id: int | None
    item_id: int
    unit_id: int
    timestamp: datetime
    reference: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass(frozen=True)
class RequestRecord:
    id: int
    status: str
    quantity: int
    sector_name: str | None
    requestor_id: int | None
    item_id: int
    unit_id: int
    timestamp: datetime
    decided_by: int | None = None
    decided_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        payload["decided_at"] = self.decided_at.isoformat() if self.decided_at else None
        return payload
