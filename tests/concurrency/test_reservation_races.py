"""
Multi-threaded race tests for the ledger and reservation manager.

Each test releases its workers through a Barrier so the operations really
contend for the same stock rows.  Runs against SQLite by default; set
DATABASE_URL to exercise PostgreSQL row locks as well.
"""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier
from uuid import uuid4

import pytest

from inventory_kernel.db.locking import RowLockManager
from inventory_kernel.domain.values import ReservationStatus, TransitionOutcome
from inventory_kernel.exceptions import (
    InsufficientStockError,
    ReservationNotActiveError,
)
from inventory_kernel.services.stock_ledger import LockingPolicy, StockLedger

pytestmark = pytest.mark.slow_locks

WORKERS = 10


@pytest.fixture
def ledger(session_factory, deterministic_clock):
    locks = RowLockManager(timeout_seconds=10.0)
    policy = LockingPolicy(timeout_seconds=10.0, max_retries=3, backoff_seconds=0.02)
    return StockLedger(session_factory, locks, deterministic_clock, policy)


def run_concurrently(fn, args_list):
    """Run ``fn(*args)`` for every entry at once; return (results, errors)."""
    barrier = Barrier(len(args_list))

    def worker(args):
        barrier.wait()
        try:
            return fn(*args), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(args_list)) as pool:
        outcomes = list(pool.map(worker, args_list))
    return [r for r, _ in outcomes if r is not None], [e for _, e in outcomes if e is not None]


class TestReservationContention:
    @pytest.mark.parametrize("available", [0, 4, WORKERS])
    def test_reservations_never_oversell(self, ledger, manager, stocked, stock_key, available):
        if available:
            stocked(available)
        else:
            ledger.open_stock(stock_key.product_id, stock_key.warehouse_id)

        def reserve():
            return manager.create_reservation(
                stock_key.product_id, stock_key.warehouse_id, uuid4(), 1
            )

        results, errors = run_concurrently(reserve, [()] * WORKERS)

        assert len(results) == available
        assert len(errors) == WORKERS - available
        assert all(isinstance(e, InsufficientStockError) for e in errors)
        snap = ledger.get_stock(stock_key)
        assert snap.reserved == available
        assert snap.quantity == available

    def test_fulfill_and_cancel_have_one_winner(self, ledger, manager, stocked, stock_key):
        stocked(5)
        reservation = manager.create_reservation(
            stock_key.product_id, stock_key.warehouse_id, uuid4(), 3
        )

        def fulfill():
            return ("fulfill", manager.fulfill(reservation.id))

        def cancel():
            return ("cancel", manager.cancel(reservation.id))

        results, errors = run_concurrently(lambda op: op(), [(fulfill,), (cancel,)])

        final = manager.get_reservation(reservation.id)
        snap = ledger.get_stock(stock_key)
        assert snap.reserved == 0
        if final.status is ReservationStatus.FULFILLED:
            assert snap.quantity == 2
            cancel_result = dict(results)["cancel"]
            assert cancel_result.outcome is TransitionOutcome.ALREADY_FINALIZED
            assert errors == []
        else:
            assert final.status is ReservationStatus.CANCELLED
            assert snap.quantity == 5
            assert len(errors) == 1
            assert isinstance(errors[0], ReservationNotActiveError)

    def test_concurrent_cancels_apply_once(self, ledger, manager, stocked, stock_key):
        stocked(5)
        reservation = manager.create_reservation(
            stock_key.product_id, stock_key.warehouse_id, uuid4(), 2
        )

        results, errors = run_concurrently(manager.cancel, [(reservation.id,)] * WORKERS)

        assert errors == []
        outcomes = [r.outcome for r in results]
        assert outcomes.count(TransitionOutcome.APPLIED) == 1
        assert outcomes.count(TransitionOutcome.ALREADY_FINALIZED) == WORKERS - 1
        releases = [m for m in ledger.list_movements(stock_key) if m.movement_type.value == "release"]
        assert len(releases) == 1


class TestLedgerContention:
    def test_concurrent_receives_all_land(self, ledger, stocked, stock_key):
        stocked(1)
        results, errors = run_concurrently(
            lambda qty: ledger.receive(stock_key, qty), [(i,) for i in range(1, WORKERS + 1)]
        )
        assert errors == []
        snap = ledger.get_stock(stock_key)
        assert snap.quantity == 1 + sum(range(1, WORKERS + 1))
        assert snap.version == WORKERS + 1
        sequences = [m.sequence for m in ledger.list_movements(stock_key)]
        assert sequences == list(range(1, WORKERS + 2))

    def test_opposite_transfers_do_not_deadlock(self, ledger, stocked, stock_key, east_key):
        stocked(50)
        stocked(50, east_key)
        args = [(stock_key, east_key) if i % 2 else (east_key, stock_key) for i in range(WORKERS)]

        results, errors = run_concurrently(lambda src, dst: ledger.transfer(src, dst, 3), args)

        assert errors == []
        assert len(results) == WORKERS
        total = ledger.get_stock(stock_key).quantity + ledger.get_stock(east_key).quantity
        assert total == 100

    def test_consumers_cannot_overdraw(self, ledger, stocked, stock_key):
        stocked(5)
        results, errors = run_concurrently(
            lambda: ledger.consume(stock_key, 1, uuid4()), [()] * WORKERS
        )
        assert len(results) == 5
        assert all(isinstance(e, InsufficientStockError) for e in errors)
        assert ledger.get_stock(stock_key).quantity == 0
