"""Tests for the read-only stock, warehouse and reservation selectors."""

from uuid import uuid4

from inventory_kernel.domain.values import ReservationStatus, StockKey
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.selectors.stock_selector import StockSelector, WarehouseSelector


class TestStockSelector:
    def test_lookup_by_key_and_id(self, session, stocked, stock_key):
        snap = stocked(3)
        selector = StockSelector(session)
        assert selector.get_by_key(stock_key) == snap
        assert selector.get_by_id(snap.id) == snap
        assert selector.get_by_id(uuid4()) is None

    def test_product_and_warehouse_listings(
        self, session, stocked, stock_key, east_key, warehouse, ledger
    ):
        stocked(3)
        stocked(4, east_key)
        other = ledger.receive(StockKey(uuid4(), warehouse.id), 1).stock

        selector = StockSelector(session)
        assert {s.quantity for s in selector.list_for_product(stock_key.product_id)} == {3, 4}
        assert {s.id for s in selector.list_for_warehouse(warehouse.id)} == {
            selector.get_by_key(stock_key).id,
            other.id,
        }
        assert len(selector.list_ids()) == 3

    def test_total_available_across_warehouses(
        self, session, stocked, stock_key, east_key, manager
    ):
        stocked(10)
        stocked(5, east_key)
        manager.create_reservation(stock_key.product_id, stock_key.warehouse_id, uuid4(), 4)
        assert StockSelector(session).total_available(stock_key.product_id) == 11
        assert StockSelector(session).total_available(uuid4()) == 0


class TestWarehouseSelector:
    def test_active_listing_excludes_inactive(
        self, session, warehouse, second_warehouse, warehouse_service
    ):
        warehouse_service.deactivate(second_warehouse.id)
        selector = WarehouseSelector(session)
        assert [w.code for w in selector.list_active()] == ["MAIN"]
        assert selector.get_by_code("east").is_active is False
        assert selector.get_by_id(uuid4()) is None


class TestReservationSelector:
    def test_due_pages_with_cursor(self, session, stocked, stock_key, manager, deterministic_clock):
        stocked(10)
        created = [
            manager.create_reservation(
                stock_key.product_id, stock_key.warehouse_id, uuid4(), 1, ttl
            )
            for ttl in (30, 10, 20)
        ]
        deterministic_clock.advance(60)
        now = deterministic_clock.now()
        selector = ReservationSelector(session)

        first = selector.find_due(now, 2)
        rest = selector.find_due(now, 2, after=(first[-1].expires_at, first[-1].id))

        by_ttl = sorted(created, key=lambda r: r.expires_at)
        assert [r.id for r in first + rest] == [r.id for r in by_ttl]

    def test_active_reserved_and_find_active(self, session, stocked, stock_key, manager):
        snap = stocked(10)
        order = uuid4()
        held = manager.create_reservation(stock_key.product_id, stock_key.warehouse_id, order, 3)
        cancelled = manager.create_reservation(
            stock_key.product_id, stock_key.warehouse_id, uuid4(), 2
        )
        manager.cancel(cancelled.id)

        selector = ReservationSelector(session)
        assert selector.active_reserved(snap.id) == 3
        assert selector.find_active(snap.id, order).id == held.id
        assert selector.find_active(snap.id, uuid4()) is None
        assert selector.get(cancelled.id).status is ReservationStatus.CANCELLED
