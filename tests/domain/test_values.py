"""Tests for stock keys, enumerations and the deterministic clock."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from inventory_kernel.domain.clock import DeterministicClock, SystemClock
from inventory_kernel.domain.dtos import ReconciliationReport, StockSnapshot
from inventory_kernel.domain.values import MovementType, ReservationStatus, StockKey

P1 = UUID("00000000-0000-0000-0000-000000000001")
P2 = UUID("00000000-0000-0000-0000-000000000002")
W1 = UUID("10000000-0000-0000-0000-000000000000")
W2 = UUID("20000000-0000-0000-0000-000000000000")


class TestStockKey:
    def test_ordering_is_product_then_warehouse(self):
        keys = [StockKey(P2, W1), StockKey(P1, W2), StockKey(P1, W1)]
        assert sorted(keys) == [StockKey(P1, W1), StockKey(P1, W2), StockKey(P2, W1)]

    def test_ordering_matches_string_ordering(self):
        """Lock order and the database ORDER BY on String(36) columns agree."""
        keys = [StockKey(P2, W1), StockKey(P1, W2), StockKey(P1, W1)]
        by_value = sorted(keys)
        by_text = sorted(keys, key=lambda k: (str(k.product_id), str(k.warehouse_id)))
        assert by_value == by_text

    def test_hashable_and_printable(self):
        key = StockKey(P1, W1)
        assert {key: 1}[StockKey(P1, W1)] == 1
        assert str(key) == f"{P1}@{W1}"


class TestEnums:
    def test_quantity_affecting_types(self):
        assert {m for m in MovementType if m.affects_quantity} == {
            MovementType.IN,
            MovementType.OUT,
            MovementType.ADJUST,
            MovementType.TRANSFER,
        }

    def test_terminal_statuses(self):
        assert not ReservationStatus.ACTIVE.is_terminal
        assert all(
            s.is_terminal
            for s in (
                ReservationStatus.FULFILLED,
                ReservationStatus.EXPIRED,
                ReservationStatus.CANCELLED,
            )
        )


class TestDtos:
    def test_snapshot_available(self):
        snap = StockSnapshot(P1, P1, W1, quantity=10, reserved=3, version=2)
        assert snap.available == 7
        assert snap.key == StockKey(P1, W1)

    def test_report_consistency(self):
        ok = ReconciliationReport(P1, 5, 5, 2, 2, 3)
        bad = ReconciliationReport(P1, 5, 4, 2, 2, 3)
        assert ok.is_consistent
        assert not bad.is_consistent
        assert not bad.quantity_matches and bad.reserved_matches


class TestClock:
    def test_deterministic_clock_is_stable(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_advance_and_set(self):
        clock = DeterministicClock()
        start = clock.now()
        clock.advance(30)
        assert clock.now() - start == timedelta(seconds=30)
        target = datetime(2030, 5, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target

    def test_system_clock_is_aware(self):
        assert SystemClock().now().tzinfo is not None
