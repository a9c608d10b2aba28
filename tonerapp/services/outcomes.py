"""Result values returned by the stock ledger, transfers and request workflow.

Business failures (not enough stock, a meaningless transfer, a request that was
already decided) are ordinary outcomes callers branch on.  Only infrastructure
problems raise, as :class:`PersistenceFailure`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class OutcomeError(str, Enum):
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNKNOWN_UNIT = "unknown_unit"
    UNKNOWN_ITEM = "unknown_item"
    INVALID_TRANSFER = "invalid_transfer"
    ALREADY_DECIDED = "already_decided"
    INVALID_DELTA = "invalid_delta"
    INVALID_DECISION = "invalid_decision"
    REQUEST_NOT_FOUND = "request_not_found"


class PersistenceFailure(Exception):
    """The backing store was unreachable or refused the write.

    Nothing from the failed operation has been committed, so the caller may
    retry the whole operation.
    """

    retryable = True


@dataclass(frozen=True)
class Outcome:
    ok: bool
    error: OutcomeError | None = None
    message: str = ""
    value: Any = None

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "Outcome":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: OutcomeError, message: str) -> "Outcome":
        return cls(ok=False, error=error, message=message)

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": self.ok, "message": self.message}
        if self.error is not None:
            payload["error"] = self.error.value
        return payload
