"""
Module: inventory_kernel.db.locking
Responsibility: In-process row lock manager that serializes every mutation of
    a stock row and enforces the global lock order for multi-row operations.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/,
    selectors/, or outer layers.

Invariants enforced:
    - One lock per lock key; a key is held by at most one thread.
    - Multi-key acquisition always proceeds in ascending key order, so two
      transfers over the same pair of rows can never deadlock.
    - A thread that already holds keys may only add keys strictly greater
      than every key it holds; anything else raises DeadlockAvoidedError
      before waiting.
    - Every wait is bounded; expiry raises LockTimeoutError.

Failure modes:
    - LockTimeoutError (retryable) when a key is not released in time.
    - DeadlockAvoidedError (retryable) on an ordering violation.

Non-goals:
    - Cross-process exclusion.  That is the job of SELECT ... FOR UPDATE in
      the database; this manager removes intra-process contention before it
      reaches the database and provides the bounded wait on backends (SQLite)
      that have no row locks.
"""

import threading
from contextlib import contextmanager
from typing import Any, Hashable, Iterator, Sequence

from inventory_kernel.exceptions import DeadlockAvoidedError, LockTimeoutError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.locking")


class RowLockManager:
    """
    Registry of per-key locks with ordered, bounded acquisition.

    Contract:
        ``acquire(keys)`` returns the sorted tuple of keys now held by the
        calling thread; ``release(keys)`` releases them.  ``hold(*keys)`` is
        the context-manager form.

    Guarantees:
        - All-or-nothing: if any key cannot be acquired, keys acquired
          earlier in the same call are released before raising.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[Hashable, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._local = threading.local()

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _held(self) -> list[Any]:
        held = getattr(self._local, "held", None)
        if held is None:
            held = []
            self._local.held = held
        return held

    def held_keys(self) -> tuple[Any, ...]:
        """Keys held by the calling thread, in acquisition order."""
        return tuple(self._held())

    def acquire(
        self,
        keys: Sequence[Any],
        timeout_seconds: float | None = None,
    ) -> tuple[Any, ...]:
        """
        Acquire all ``keys`` in ascending order.

        Raises:
            DeadlockAvoidedError: the thread already holds a key >= the
                smallest requested key.
            LockTimeoutError: a key was not acquired within the timeout.
        """
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        ordered = tuple(sorted(set(keys)))
        if not ordered:
            return ordered

        held = self._held()
        if held:
            highest = max(held)
            if ordered[0] <= highest:
                logger.warning(
                    "lock_order_violation",
                    extra={"held_key": str(highest), "requested_key": str(ordered[0])},
                )
                raise DeadlockAvoidedError(str(highest), str(ordered[0]))

        acquired: list[Any] = []
        try:
            for key in ordered:
                if not self._lock_for(key).acquire(timeout=timeout):
                    logger.warning(
                        "lock_wait_timed_out",
                        extra={"lock_key": str(key), "timeout_seconds": timeout},
                    )
                    raise LockTimeoutError(str(key), timeout)
                acquired.append(key)
                held.append(key)
        except BaseException:
            self._release_keys(acquired)
            raise
        return ordered

    def release(self, keys: Sequence[Any]) -> None:
        self._release_keys(list(keys))

    def _release_keys(self, keys: list[Any]) -> None:
        held = self._held()
        for key in reversed(keys):
            if key in held:
                held.remove(key)
                self._lock_for(key).release()

    @contextmanager
    def hold(self, *keys: Any, timeout_seconds: float | None = None) -> Iterator[tuple[Any, ...]]:
        ordered = self.acquire(keys, timeout_seconds)
        try:
            yield ordered
        finally:
            self.release(ordered)
