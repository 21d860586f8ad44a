"""
Tests for StockLedger: every mutation validated, atomic with its movement,
and idempotent under a repeated reference.
"""

import threading
from uuid import uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from inventory_kernel.db.locking import RowLockManager
from inventory_kernel.domain.values import MovementType, StockKey
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    InvariantViolationError,
    LockTimeoutError,
    OptimisticLockError,
    OverReservedError,
    StockNotFoundError,
    WarehouseInactiveError,
    WarehouseNotFoundError,
)
from inventory_kernel.models.stock import Stock
from inventory_kernel.services.stock_ledger import LockingPolicy, StockLedger


class TestOpenStock:
    def test_open_creates_zero_row(self, ledger, stock_key):
        snap = ledger.open_stock(stock_key.product_id, stock_key.warehouse_id)
        assert (snap.quantity, snap.reserved, snap.version) == (0, 0, 0)
        assert snap.key == stock_key

    def test_open_is_idempotent(self, ledger, stock_key):
        first = ledger.open_stock(stock_key.product_id, stock_key.warehouse_id)
        second = ledger.open_stock(stock_key.product_id, stock_key.warehouse_id)
        assert first.id == second.id

    def test_open_in_unknown_warehouse(self, ledger, product_id):
        with pytest.raises(WarehouseNotFoundError):
            ledger.open_stock(product_id, uuid4())

    def test_open_in_inactive_warehouse(self, ledger, product_id, warehouse, warehouse_service):
        warehouse_service.deactivate(warehouse.id)
        with pytest.raises(WarehouseInactiveError):
            ledger.open_stock(product_id, warehouse.id)

    def test_get_missing_row(self, ledger, stock_key):
        with pytest.raises(StockNotFoundError) as exc_info:
            ledger.get_stock(stock_key)
        assert exc_info.value.code == "STOCK_NOT_FOUND"


class TestReceive:
    def test_receive_opens_row_and_records_in(self, ledger, stock_key):
        result = ledger.receive(stock_key, 10, "purchase order 17")
        assert result.stock.quantity == 10
        assert result.stock.reserved == 0
        assert result.movement.movement_type is MovementType.IN
        assert result.movement.quantity == 10
        assert result.movement.reason == "purchase order 17"
        assert result.movement.sequence == 1
        assert not result.replayed

    @pytest.mark.parametrize("qty", [0, -5])
    def test_non_positive_rejected_without_effect(self, ledger, stocked, stock_key, qty):
        stocked(5)
        with pytest.raises(InvalidQuantityError):
            ledger.receive(stock_key, qty)
        assert ledger.get_stock(stock_key).quantity == 5
        assert len(ledger.list_movements(stock_key)) == 1

    @pytest.mark.parametrize("qty", [0, -5])
    def test_rejected_receive_does_not_open_row(self, ledger, stock_key, qty):
        with pytest.raises(InvalidQuantityError):
            ledger.receive(stock_key, qty)
        with pytest.raises(StockNotFoundError):
            ledger.get_stock(stock_key)

    def test_rejected_receive_in_inactive_warehouse_does_not_open_row(
        self, ledger, stock_key, warehouse, warehouse_service
    ):
        warehouse_service.deactivate(warehouse.id)
        with pytest.raises(WarehouseInactiveError):
            ledger.receive(stock_key, 3)
        with pytest.raises(StockNotFoundError):
            ledger.get_stock(stock_key)

    def test_replay_with_same_reference_is_noop(self, ledger, stock_key):
        ref = uuid4()
        first = ledger.receive(stock_key, 4, reference_id=ref, reference_type="receipt")
        again = ledger.receive(stock_key, 4, reference_id=ref, reference_type="receipt")
        assert again.replayed
        assert again.movement.id == first.movement.id
        assert ledger.get_stock(stock_key).quantity == 4

    def test_receive_into_inactive_warehouse_rejected(
        self, ledger, stocked, stock_key, warehouse, warehouse_service
    ):
        stocked(5)
        warehouse_service.deactivate(warehouse.id)
        with pytest.raises(WarehouseInactiveError):
            ledger.receive(stock_key, 1)

    def test_payload_stored_unmodified(self, ledger, stock_key):
        payload = {"supplier": "ACME", "lines": [1, 2, 3], "nested": {"x": None}}
        result = ledger.receive(stock_key, 1, payload=payload)
        assert ledger.list_movements(stock_key)[0].payload == payload
        assert result.movement.payload == payload


class TestConsume:
    def test_consume_decrements_quantity(self, ledger, stocked, stock_key):
        stocked(10)
        order = uuid4()
        result = ledger.consume(stock_key, 4, order)
        assert result.stock.quantity == 6
        assert result.movement.movement_type is MovementType.OUT
        assert result.movement.quantity == -4
        assert result.movement.reference_type == "order"
        assert result.movement.reference_id == order

    def test_consume_more_than_on_hand(self, ledger, stocked, stock_key):
        stocked(3)
        with pytest.raises(InsufficientStockError):
            ledger.consume(stock_key, 4, uuid4())

    def test_consume_into_reserved_units(self, ledger, stocked, stock_key):
        stocked(10)
        ledger.reserve(stock_key, 8, reference_id=uuid4())
        with pytest.raises(OverReservedError):
            ledger.consume(stock_key, 3, uuid4())
        snap = ledger.get_stock(stock_key)
        assert (snap.quantity, snap.reserved) == (10, 8)

    def test_consume_from_reserved(self, ledger, stocked, stock_key):
        stocked(10)
        ledger.reserve(stock_key, 4, reference_id=uuid4())
        result = ledger.consume(stock_key, 4, uuid4(), from_reserved=True)
        assert (result.stock.quantity, result.stock.reserved) == (6, 0)

    def test_consume_missing_row(self, ledger, stock_key):
        with pytest.raises(StockNotFoundError):
            ledger.consume(stock_key, 1, uuid4())

    def test_consume_replay(self, ledger, stocked, stock_key):
        stocked(10)
        order = uuid4()
        ledger.consume(stock_key, 2, order)
        assert ledger.consume(stock_key, 2, order).replayed
        assert ledger.get_stock(stock_key).quantity == 8

    def test_consume_allowed_in_inactive_warehouse(
        self, ledger, stocked, stock_key, warehouse, warehouse_service
    ):
        stocked(5)
        warehouse_service.deactivate(warehouse.id)
        assert ledger.consume(stock_key, 5, uuid4()).stock.quantity == 0


class TestAdjust:
    def test_signed_adjustments(self, ledger, stocked, stock_key):
        stocked(10)
        assert ledger.adjust(stock_key, -3, "stocktake").stock.quantity == 7
        result = ledger.adjust(stock_key, 2, "found in aisle 4")
        assert result.stock.quantity == 9
        assert result.movement.movement_type is MovementType.ADJUST
        assert result.movement.quantity == 2

    def test_adjust_below_zero(self, ledger, stocked, stock_key):
        stocked(2)
        with pytest.raises(InsufficientStockError):
            ledger.adjust(stock_key, -3, "shrinkage")

    def test_adjust_below_reserved(self, ledger, stocked, stock_key):
        stocked(10)
        ledger.reserve(stock_key, 6, reference_id=uuid4())
        with pytest.raises(OverReservedError):
            ledger.adjust(stock_key, -5, "damaged")

    def test_zero_delta_rejected(self, ledger, stocked, stock_key):
        stocked(1)
        with pytest.raises(InvalidQuantityError):
            ledger.adjust(stock_key, 0, "noop")


class TestReserveRelease:
    def test_reserve_changes_reserved_only(self, ledger, stocked, stock_key):
        stocked(10)
        result = ledger.reserve(stock_key, 3, reference_id=uuid4())
        assert (result.stock.quantity, result.stock.reserved) == (10, 3)
        assert result.stock.available == 7
        assert result.movement.movement_type is MovementType.RESERVE
        assert result.movement.quantity == 3

    def test_reserve_beyond_available(self, ledger, stocked, stock_key):
        stocked(2)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.reserve(stock_key, 3, reference_id=uuid4())
        assert exc_info.value.retryable is False

    def test_release_beyond_reserved(self, ledger, stocked, stock_key):
        stocked(5)
        with pytest.raises(InvariantViolationError):
            ledger.release_reserved(stock_key, 1, reference_id=uuid4())

    def test_release_records_negative_delta(self, ledger, stocked, stock_key):
        stocked(5)
        ledger.reserve(stock_key, 2, reference_id=uuid4())
        result = ledger.release_reserved(stock_key, 2, reference_id=uuid4())
        assert result.stock.reserved == 0
        assert result.movement.quantity == -2


class TestTransfer:
    def test_transfer_between_warehouses(self, ledger, stocked, stock_key, east_key):
        stocked(20)
        result = ledger.transfer(stock_key, east_key, 5, "rebalance")
        assert result.outbound.stock.quantity == 15
        assert result.inbound.stock.quantity == 5
        assert result.outbound.movement.quantity == -5
        assert result.inbound.movement.quantity == 5
        assert result.outbound.movement.reference_id == result.correlation_id
        assert result.inbound.movement.reference_id == result.correlation_id
        assert result.outbound.movement.reference_type == "transfer"
        assert ledger.get_stock(stock_key).quantity == 15
        assert ledger.get_stock(east_key).quantity == 5

    def test_insufficient_unreserved_has_no_partial_effect(
        self, ledger, stocked, stock_key, east_key
    ):
        stocked(10)
        ledger.reserve(stock_key, 8, reference_id=uuid4())
        with pytest.raises(InsufficientStockError):
            ledger.transfer(stock_key, east_key, 3)
        assert ledger.get_stock(stock_key).quantity == 10
        with pytest.raises(StockNotFoundError):
            ledger.get_stock(east_key)

    def test_missing_source_does_not_open_destination(self, ledger, stock_key, east_key):
        with pytest.raises(StockNotFoundError):
            ledger.transfer(stock_key, east_key, 1)
        with pytest.raises(StockNotFoundError):
            ledger.get_stock(east_key)

    def test_transfer_id_reused_for_other_destination(
        self, ledger, stocked, stock_key, east_key, warehouse_service
    ):
        west = warehouse_service.register("West Warehouse", "WEST")
        west_key = StockKey(stock_key.product_id, west.id)
        stocked(10)
        transfer_id = uuid4()
        ledger.transfer(stock_key, east_key, 2, transfer_id=transfer_id)

        with pytest.raises(InvalidTransferError):
            ledger.transfer(stock_key, west_key, 2, transfer_id=transfer_id)
        assert ledger.get_stock(stock_key).quantity == 8
        with pytest.raises(StockNotFoundError):
            ledger.get_stock(west_key)

    def test_transfer_id_reused_for_unrelated_pair(
        self, ledger, stocked, stock_key, east_key, warehouse
    ):
        stocked(10)
        transfer_id = uuid4()
        ledger.transfer(stock_key, east_key, 2, transfer_id=transfer_id)
        other_key = StockKey(uuid4(), warehouse.id)
        stocked(5, other_key)

        with pytest.raises(InvalidTransferError):
            ledger.transfer(
                other_key, StockKey(other_key.product_id, east_key.warehouse_id), 1,
                transfer_id=transfer_id,
            )
        assert ledger.get_stock(other_key).quantity == 5

    def test_same_row_rejected(self, ledger, stocked, stock_key):
        stocked(5)
        with pytest.raises(InvalidTransferError):
            ledger.transfer(stock_key, stock_key, 1)

    def test_product_mismatch_rejected(self, ledger, stocked, stock_key, second_warehouse):
        stocked(5)
        with pytest.raises(InvalidTransferError):
            ledger.transfer(stock_key, StockKey(uuid4(), second_warehouse.id), 1)

    def test_inactive_destination_rejected(
        self, ledger, stocked, stock_key, east_key, second_warehouse, warehouse_service
    ):
        stocked(5)
        ledger.open_stock(east_key.product_id, east_key.warehouse_id)
        warehouse_service.deactivate(second_warehouse.id)
        with pytest.raises(WarehouseInactiveError):
            ledger.transfer(stock_key, east_key, 1)
        assert ledger.get_stock(stock_key).quantity == 5

    def test_transfer_replay_by_transfer_id(self, ledger, stocked, stock_key, east_key):
        stocked(10)
        transfer_id = uuid4()
        first = ledger.transfer(stock_key, east_key, 4, transfer_id=transfer_id)
        again = ledger.transfer(stock_key, east_key, 4, transfer_id=transfer_id)
        assert first.correlation_id == transfer_id
        assert again.replayed
        assert ledger.get_stock(stock_key).quantity == 6
        assert ledger.get_stock(east_key).quantity == 4

    def test_reverse_direction_uses_same_lock_order(self, ledger, stocked, stock_key, east_key):
        stocked(10)
        ledger.transfer(stock_key, east_key, 6)
        ledger.transfer(east_key, stock_key, 2)
        assert ledger.get_stock(stock_key).quantity == 6
        assert ledger.get_stock(east_key).quantity == 4


class TestTransactionScope:
    def test_failure_rolls_back_earlier_operations(self, ledger, stocked, stock_key):
        stocked(5)
        with pytest.raises(InsufficientStockError):
            with ledger.transaction(stock_key) as txn:
                txn.receive(stock_key, 10)
                txn.consume(stock_key, 100, uuid4())
        assert ledger.get_stock(stock_key).quantity == 5
        assert len(ledger.list_movements(stock_key)) == 1

    def test_unexpected_error_rolls_back(self, ledger, stocked, stock_key):
        stocked(5)
        with pytest.raises(RuntimeError):
            with ledger.transaction(stock_key) as txn:
                txn.adjust(stock_key, 3, "count")
                raise RuntimeError("caller failed")
        assert ledger.get_stock(stock_key).quantity == 5

    def test_unlocked_key_rejected(self, ledger, stocked, stock_key, east_key):
        stocked(5)
        with pytest.raises(ValueError):
            with ledger.transaction(stock_key) as txn:
                txn.receive(east_key, 1)

    def test_locks_released_after_exit(self, ledger, lock_manager, stocked, stock_key):
        stocked(5)
        with ledger.transaction(stock_key):
            assert lock_manager.held_keys() == (stock_key,)
        assert lock_manager.held_keys() == ()

    def test_version_and_sequence_advance_together(self, ledger, stocked, stock_key):
        stocked(5)
        ledger.adjust(stock_key, 1, "a")
        result = ledger.adjust(stock_key, 1, "b")
        assert result.stock.version == 3
        assert [m.sequence for m in ledger.list_movements(stock_key)] == [1, 2, 3]


class TestConcurrencyErrors:
    @pytest.fixture
    def fast_ledger(self, session_factory, deterministic_clock):
        locks = RowLockManager(timeout_seconds=0.1)
        policy = LockingPolicy(timeout_seconds=0.1, max_retries=1, backoff_seconds=0.01)
        return StockLedger(session_factory, locks, deterministic_clock, policy), locks

    def test_held_row_lock_times_out_after_retries(
        self, fast_ledger, stocked, stock_key, captured_logs
    ):
        ledger, locks = fast_ledger
        stocked(5)
        held = threading.Event()
        done = threading.Event()

        def holder():
            with locks.hold(stock_key):
                held.set()
                done.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert held.wait(5)
            with pytest.raises(LockTimeoutError) as exc_info:
                ledger.receive(stock_key, 1)
        finally:
            done.set()
            thread.join(5)

        assert exc_info.value.retryable
        exhausted = [r for r in captured_logs() if r["message"] == "lock_retries_exhausted"]
        assert exhausted[-1]["attempts"] == 2
        assert ledger.get_stock(stock_key).quantity == 5

    def test_database_lock_error_maps_to_timeout(
        self, session_factory, deterministic_clock, stocked, stock_key
    ):
        stocked(5)
        opened = []

        def locked_session():
            session = session_factory()

            def execute(*args, **kwargs):
                raise OperationalError("SELECT", {}, Exception("database is locked"))

            session.execute = execute
            opened.append(session)
            return session

        ledger = StockLedger(
            locked_session,
            RowLockManager(timeout_seconds=0.1),
            deterministic_clock,
            LockingPolicy(timeout_seconds=0.1, max_retries=2, backoff_seconds=0.01),
        )
        with pytest.raises(LockTimeoutError):
            ledger.adjust(stock_key, 1, "count")
        assert len(opened) == 3

    def test_stale_version_raises_optimistic_lock_error(self, ledger, stocked, stock_key):
        stocked(5)
        stocks = Stock.__table__
        with pytest.raises(OptimisticLockError) as exc_info:
            with ledger.transaction(stock_key) as txn:
                stock_id = txn.stock(stock_key).id
                txn.session.execute(
                    update(stocks)
                    .where(stocks.c.id == stock_id)
                    .values(version=stocks.c.version + 1)
                )
                txn.adjust(stock_key, 1, "count")
        assert exc_info.value.code == "OPTIMISTIC_LOCK_CONFLICT"
        snap = ledger.get_stock(stock_key)
        assert (snap.quantity, snap.version) == (5, 1)


class TestLogging:
    def test_mutation_logged_with_operation(self, ledger, stock_key, captured_logs):
        ledger.receive(stock_key, 3)
        records = [r for r in captured_logs() if r["message"] == "stock_received"]
        assert len(records) == 1
        assert records[0]["operation"] == "receive"
        assert records[0]["delta"] == 3

    def test_rejection_logged(self, ledger, stocked, stock_key, captured_logs):
        stocked(1)
        with pytest.raises(InsufficientStockError):
            ledger.consume(stock_key, 2, uuid4())
        rolled_back = [
            r for r in captured_logs() if r["message"] == "ledger_transaction_rolled_back"
        ]
        assert rolled_back[-1]["error_code"] == "INSUFFICIENT_STOCK"
