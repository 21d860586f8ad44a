"""Tests for RowLockManager: ordered, bounded, all-or-nothing acquisition."""

import threading
import time
from uuid import UUID

import pytest

from inventory_kernel.db.locking import RowLockManager
from inventory_kernel.domain.values import StockKey
from inventory_kernel.exceptions import DeadlockAvoidedError, LockTimeoutError

P = UUID("00000000-0000-0000-0000-0000000000aa")
K1 = StockKey(P, UUID("10000000-0000-0000-0000-000000000000"))
K2 = StockKey(P, UUID("20000000-0000-0000-0000-000000000000"))
K3 = StockKey(P, UUID("30000000-0000-0000-0000-000000000000"))


@pytest.fixture
def locks():
    return RowLockManager(timeout_seconds=0.2)


class TestAcquireRelease:
    def test_acquire_sorts_and_dedupes(self, locks):
        held = locks.acquire([K2, K1, K2])
        try:
            assert held == (K1, K2)
            assert locks.held_keys() == (K1, K2)
        finally:
            locks.release(held)
        assert locks.held_keys() == ()

    def test_hold_context_releases_on_error(self, locks):
        with pytest.raises(RuntimeError):
            with locks.hold(K1):
                raise RuntimeError("boom")
        assert locks.held_keys() == ()
        with locks.hold(K1):
            pass

    def test_empty_acquire_is_noop(self, locks):
        assert locks.acquire([]) == ()


class TestOrdering:
    def test_ascending_nested_acquire_allowed(self, locks):
        with locks.hold(K1):
            with locks.hold(K2, K3):
                assert locks.held_keys() == (K1, K2, K3)

    def test_descending_nested_acquire_refused(self, locks):
        with locks.hold(K2):
            with pytest.raises(DeadlockAvoidedError) as exc_info:
                locks.acquire([K1])
            assert exc_info.value.retryable
        assert locks.held_keys() == ()

    def test_reacquiring_held_key_refused(self, locks):
        with locks.hold(K1):
            with pytest.raises(DeadlockAvoidedError):
                locks.acquire([K1])


class TestContention:
    def _hold_in_thread(self, locks, keys, release_event, acquired_event):
        def run():
            with locks.hold(*keys):
                acquired_event.set()
                release_event.wait(5)

        t = threading.Thread(target=run)
        t.start()
        assert acquired_event.wait(5)
        return t

    def test_timeout_when_held_elsewhere(self, locks):
        release, acquired = threading.Event(), threading.Event()
        t = self._hold_in_thread(locks, [K1], release, acquired)
        try:
            start = time.monotonic()
            with pytest.raises(LockTimeoutError) as exc_info:
                locks.acquire([K1], timeout_seconds=0.1)
            assert time.monotonic() - start < 2
            assert exc_info.value.code == "LOCK_TIMEOUT"
        finally:
            release.set()
            t.join()

    def test_partial_acquisition_is_rolled_back(self, locks):
        """If K2 times out, the already-acquired K1 is released."""
        release, acquired = threading.Event(), threading.Event()
        t = self._hold_in_thread(locks, [K2], release, acquired)
        try:
            with pytest.raises(LockTimeoutError):
                locks.acquire([K1, K2], timeout_seconds=0.1)
            assert locks.held_keys() == ()
            # K1 must be free for another caller
            with locks.hold(K1, timeout_seconds=0.1):
                pass
        finally:
            release.set()
            t.join()

    def test_waiter_proceeds_after_release(self, locks):
        release, acquired = threading.Event(), threading.Event()
        t = self._hold_in_thread(locks, [K1], release, acquired)
        timer = threading.Timer(0.05, release.set)
        timer.start()
        try:
            with locks.hold(K1, timeout_seconds=2):
                assert locks.held_keys() == (K1,)
        finally:
            release.set()
            t.join()
            timer.cancel()
