from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from tonerapp.services.requests_workflow import RequestWorkflow
from tonerapp.services.stock_ledger import StockLedger
from tonerapp.services.stock_store import SqlStockStore, StockStore
from tonerapp.services.stock_transfer import TransferCoordinator


@dataclass(frozen=True)
class StockServices:
    store: StockStore
    ledger: StockLedger
    transfers: TransferCoordinator
    requests: RequestWorkflow


def build_services(store: StockStore, *, history_limit: int = 100) -> StockServices:
    ledger = StockLedger(store, history_limit=history_limit)
    return StockServices(
        store=store,
        ledger=ledger,
        transfers=TransferCoordinator(ledger),
        requests=RequestWorkflow(store, ledger),
    )


def sql_services(session=None) -> StockServices:
    """Services bound to the Flask-SQLAlchemy session of the active app."""

    config = current_app.config
    store = SqlStockStore(
        session,
        default_min_stock_alert=int(config.get("DEFAULT_MIN_STOCK_ALERT", 5)),
    )
    return build_services(
        store, history_limit=int(config.get("TRANSACTION_HISTORY_LIMIT", 100))
    )
