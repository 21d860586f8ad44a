"""
ExpirySweeper -- in-process polling expiry of overdue reservations.

Contract:
    Every ``interval_seconds`` finds active reservations with
    ``expires_at <= now`` and calls ``ReservationManager.expire_if_due`` for
    each, so foreground and background expiry share one code path.

Architecture: inventory_kernel/services.  Reads candidates through
    ReservationSelector; all writes go through ReservationManager.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Bounded work per tick: at most ``max_batches_per_tick`` batches of
      ``batch_size`` candidates.
    - Graceful shutdown: the stop signal is checked between items; the item
      in progress completes or rolls back as a whole.
    - Sweeping is liveness only.  Fulfil checks the deadline itself, so
      correctness never depends on when (or whether) a sweep runs.
"""

from __future__ import annotations

import threading
from datetime import datetime

from inventory_kernel.db.engine import SessionFactory
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import SweepResult
from inventory_kernel.domain.values import TransitionOutcome
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.services.reservation_manager import ReservationManager

logger = get_logger("services.expiry_sweeper")


class ExpirySweeper:
    """Background sweeper for overdue reservations.

    Contract:
        - ``tick(now)`` runs one bounded sweep and returns its counts.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler.  Several sweepers against one
          database are safe (expiry is idempotent) but do duplicate reads.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        manager: ReservationManager,
        clock: Clock | None = None,
        interval_seconds: float = 60.0,
        batch_size: int = 100,
        max_batches_per_tick: int = 10,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if max_batches_per_tick <= 0:
            raise ValueError("max_batches_per_tick must be positive")
        self._session_factory = session_factory
        self._manager = manager
        self._clock = clock or SystemClock()
        self._interval = interval_seconds
        self._batch_size = batch_size
        self._max_batches = max_batches_per_tick
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> SweepResult:
        """Expire every due reservation found this tick (public for testing)."""
        now = now or self._clock.now()
        scanned = expired = already_finalized = not_due = failed = batches = 0
        cursor = None

        with LogContext.bind(operation="sweep"):
            while batches < self._max_batches and not self._stop_event.is_set():
                with self._session_factory() as session:
                    due = ReservationSelector(session).find_due(
                        now, self._batch_size, after=cursor
                    )
                if not due:
                    break
                batches += 1
                for candidate in due:
                    if self._stop_event.is_set():
                        break
                    scanned += 1
                    try:
                        result = self._manager.expire_if_due(candidate.id, now)
                    except Exception:
                        failed += 1
                        logger.exception(
                            "sweep_item_failed",
                            extra={"reservation_id": str(candidate.id)},
                        )
                        continue
                    if result.outcome is TransitionOutcome.APPLIED:
                        expired += 1
                    elif result.outcome is TransitionOutcome.ALREADY_FINALIZED:
                        already_finalized += 1
                    else:
                        not_due += 1
                cursor = (due[-1].expires_at, due[-1].id)
                if len(due) < self._batch_size:
                    break

        result = SweepResult(
            scanned=scanned,
            expired=expired,
            already_finalized=already_finalized,
            not_due=not_due,
            failed=failed,
            batches=batches,
        )
        logger.info(
            "sweep_completed",
            extra={
                "scanned": scanned,
                "expired": expired,
                "already_finalized": already_finalized,
                "not_due": not_due,
                "failed": failed,
                "batches": batches,
            },
        )
        return result

    def start(self) -> None:
        """Start sweeping in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reservation-expiry-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.info("sweeper_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current item to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sweeper_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("sweep_tick_failed")
            self._stop_event.wait(timeout=self._interval)
