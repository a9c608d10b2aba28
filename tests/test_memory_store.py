import os
import sys
import threading

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from tonerapp.models import RequestStatus, TransactionType
from tonerapp.services.memory_store import MemoryStockStore
from tonerapp.services.outcomes import OutcomeError
from tonerapp.services.stock_services import build_services

SEDE = 1
ALMOX = 2
BLACK = 10
CYAN = 11


@pytest.fixture
def services():
    store = MemoryStockStore()
    store.seed(SEDE, BLACK, 15)
    store.seed(SEDE, CYAN, 4)
    store.seed(ALMOX, BLACK, 40)
    store.seed(ALMOX, CYAN, 20)
    return build_services(store, history_limit=100)


def test_apply_delta_updates_quantity_and_history(services):
    outcome = services.ledger.apply_delta(
        SEDE, BLACK, -5, 7, TransactionType.REMOVE, "Troca setor TI"
    )

    assert outcome.ok
    assert outcome.message == "Stock updated to 10."
    assert outcome.value.type == TransactionType.REMOVE
    assert outcome.value.quantity == 5
    assert outcome.value.user_id == 7
    assert services.ledger.quantity(SEDE, BLACK) == 10

    history = services.ledger.recent_transactions()
    assert len(history) == 1
    assert history[0].reason == "Troca setor TI"


def test_refused_delta_leaves_state_untouched(services):
    outcome = services.ledger.apply_delta(
        SEDE, CYAN, -5, 7, TransactionType.REMOVE, "Troca setor TI"
    )

    assert outcome.error is OutcomeError.INSUFFICIENT_STOCK
    assert services.ledger.quantity(SEDE, CYAN) == 4
    assert services.ledger.recent_transactions() == []


def test_non_integer_delta_is_invalid(services):
    for delta in (1.5, "3", True):
        outcome = services.ledger.apply_delta(
            SEDE, BLACK, delta, 7, TransactionType.ADD, "odd"
        )
        assert outcome.error is OutcomeError.INVALID_DELTA
    assert services.ledger.quantity(SEDE, BLACK) == 15


def test_exception_inside_atomic_restores_snapshot(services):
    store = services.store

    with pytest.raises(RuntimeError):
        with store.atomic():
            store.write_quantity(SEDE, BLACK, 1)
            store.append_transaction(
                type=TransactionType.REMOVE,
                quantity=14,
                reason="half-done",
                user_id=None,
                item_id=BLACK,
                unit_id=SEDE,
            )
            raise RuntimeError("crash between steps")

    assert store.read_quantity(SEDE, BLACK) == 15
    assert store.list_transactions(limit=10) == []


def test_concurrent_debits_never_oversell(services):
    store = services.store
    store.seed(SEDE, BLACK, 10)
    outcomes = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(8)

    def debit():
        start.wait()
        result = services.ledger.apply_delta(
            SEDE, BLACK, -3, None, TransactionType.REMOVE, "parallel"
        )
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=debit) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    succeeded = [outcome for outcome in outcomes if outcome.ok]
    refused = [outcome for outcome in outcomes if not outcome.ok]
    assert len(succeeded) == 3
    assert all(outcome.error is OutcomeError.INSUFFICIENT_STOCK for outcome in refused)
    assert store.read_quantity(SEDE, BLACK) == 1
    assert len(store.list_transactions(limit=100, unit_id=SEDE, item_id=BLACK)) == 3


def test_concurrent_transfers_conserve_total(services):
    barrier = threading.Barrier(6)

    def move(source, dest):
        barrier.wait()
        services.transfers.transfer(source, dest, BLACK, 5, None)

    pairs = [(ALMOX, SEDE), (SEDE, ALMOX)] * 3
    threads = [threading.Thread(target=move, args=pair) for pair in pairs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    total = services.ledger.quantity(SEDE, BLACK) + services.ledger.quantity(ALMOX, BLACK)
    assert total == 55
    assert services.ledger.quantity(SEDE, BLACK) >= 0
    assert services.ledger.quantity(ALMOX, BLACK) >= 0


def test_concurrent_decisions_apply_once(services):
    submitted = services.requests.submit(SEDE, BLACK, 2, "RH", 5)
    request_id = submitted.value.id
    barrier = threading.Barrier(4)
    outcomes = []
    outcomes_lock = threading.Lock()

    def decide(decision):
        barrier.wait()
        result = services.requests.decide(request_id, decision, 1)
        with outcomes_lock:
            outcomes.append(result)

    decisions = [RequestStatus.APPROVED, RequestStatus.APPROVED, RequestStatus.REJECTED, "approved"]
    threads = [threading.Thread(target=decide, args=(decision,)) for decision in decisions]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for outcome in outcomes if outcome.ok) == 1
    assert sum(1 for outcome in outcomes if outcome.error is OutcomeError.ALREADY_DECIDED) == 3

    final = services.requests.get(request_id)
    assert final.status in RequestStatus.TERMINAL_STATES
    expected = 13 if final.status == RequestStatus.APPROVED else 15
    assert services.ledger.quantity(SEDE, BLACK) == expected


def test_entries_are_ordered_by_unit_then_item(services):
    levels = services.ledger.entries()
    assert [(level.unit_id, level.item_id) for level in levels] == [
        (SEDE, BLACK),
        (SEDE, CYAN),
        (ALMOX, BLACK),
        (ALMOX, CYAN),
    ]
    assert [level.item_id for level in services.ledger.low_stock()] == [CYAN]


def test_unknown_ids_are_refused_and_registered_ones_get_entries(services):
    refused = services.ledger.apply_delta(99, BLACK, 5, None, TransactionType.ADD, "compra")
    assert refused.error is OutcomeError.UNKNOWN_UNIT
    assert services.ledger.quantity(99, BLACK) == 0

    services.store.register(unit_ids=[3])
    added = services.ledger.apply_delta(3, BLACK, 5, None, TransactionType.ADD, "compra")
    assert added.ok
    assert services.ledger.quantity(3, BLACK) == 5
    assert services.requests.submit(3, 77, 1, "RH", None).error is OutcomeError.UNKNOWN_ITEM
