"""
ReservationManager -- reservation state machine over the stock ledger.

Responsibility:
    Creates timed reservations and drives each one from ACTIVE to exactly one
    terminal status (FULFILLED, EXPIRED, CANCELLED), composing the matching
    StockLedger operation in the same database transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the order workflow (create, fulfill, cancel) and by
    ExpirySweeper (expire_if_due).  Both use the same entry points, so there
    is a single code path for every transition.

Invariants enforced:
    - Single winner: the reservation row is re-read under the stock row lock
      before any transition, so of two racing transitions exactly one sees
      ACTIVE.  The loser gets ALREADY_FINALIZED (cancel/expire) or
      ReservationNotActiveError (fulfill).
    - Sum of active reservation quantities on a row equals its ``reserved``:
      every reservation insert/finalize commits with its reserve / release /
      consume movement.
    - At most one ACTIVE reservation per (stock row, order).

Failure modes:
    - InsufficientStockError (definitive) from the ledger on create.
    - ReservationNotFoundError, ReservationNotActiveError,
      ReservationExpiredError, DuplicateReservationError,
      InvalidReservationTTLError.
    - ConcurrencyError subclasses (retryable) from the ledger.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import ReservationResult, ReservationSnapshot
from inventory_kernel.domain.values import (
    ReferenceType,
    ReservationStatus,
    StockKey,
    TransitionOutcome,
)
from inventory_kernel.exceptions import (
    DuplicateReservationError,
    InvalidQuantityError,
    InvalidReservationTTLError,
    ReservationExpiredError,
    ReservationNotActiveError,
    ReservationNotFoundError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.reservation import StockReservation
from inventory_kernel.models.stock import Stock
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.services.stock_ledger import LedgerTransaction, StockLedger

logger = get_logger("services.reservation_manager")


@dataclass(frozen=True)
class ReservationPolicy:
    """TTL bounds for new reservations, in seconds."""

    default_ttl_seconds: float = 900.0
    max_ttl_seconds: float = 86400.0


class ReservationManager:
    """
    Contract:
        Every public mutation runs in one StockLedger transaction holding the
        affected stock rows locked.  Results are frozen snapshots.

    Non-goals:
        - Does NOT retry.  Callers treat InsufficientStockError as final and
          ConcurrencyError as retryable.
    """

    def __init__(
        self,
        ledger: StockLedger,
        clock: Clock | None = None,
        policy: ReservationPolicy | None = None,
    ):
        self._ledger = ledger
        self._clock = clock or ledger.clock
        self._policy = policy or ReservationPolicy()

    @property
    def clock(self) -> Clock:
        return self._clock

    def _ttl_seconds(self, ttl: timedelta | float | None) -> float:
        if ttl is None:
            seconds = float(self._policy.default_ttl_seconds)
        elif isinstance(ttl, timedelta):
            seconds = ttl.total_seconds()
        else:
            seconds = float(ttl)
        if seconds <= 0 or seconds > self._policy.max_ttl_seconds:
            raise InvalidReservationTTLError(seconds, self._policy.max_ttl_seconds)
        return seconds

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_reservation(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        order_id: UUID,
        qty: int,
        ttl: timedelta | float | None = None,
        payload: dict[str, Any] | None = None,
    ) -> ReservationSnapshot:
        """
        Hold ``qty`` units of one stock row for an order until ``now + ttl``.

        Repeating the call for the same order and row with the same quantity
        returns the existing active reservation.  An overdue one is expired
        first and a fresh reservation is created.

        Raises:
            InvalidQuantityError: qty <= 0.
            InvalidReservationTTLError: ttl <= 0 or above the maximum.
            StockNotFoundError: no stock row for (product, warehouse).
            InsufficientStockError: available < qty.
            DuplicateReservationError: the order already holds a different
                quantity on this row.
            WarehouseInactiveError: the warehouse is inactive.
        """
        if qty <= 0:
            raise InvalidQuantityError("reserve", qty)
        ttl_seconds = self._ttl_seconds(ttl)
        key = StockKey(product_id, warehouse_id)

        with LogContext.bind(order_id=order_id, operation="create_reservation"):
            with self._ledger.transaction(key) as txn:
                stock = txn.stock(key)
                now = self._clock.now()
                existing = ReservationSelector(txn.session).find_active(stock.id, order_id)
                if existing is not None and existing.is_due(now):
                    self._release(txn, key, existing, ReservationStatus.EXPIRED, now)
                    existing = None
                if existing is not None:
                    if existing.quantity != qty:
                        raise DuplicateReservationError(
                            str(order_id), str(stock.id), existing.quantity, qty
                        )
                    logger.info(
                        "reservation_reused",
                        extra={"reservation_id": str(existing.id), "quantity": qty},
                    )
                    return existing.to_snapshot()

                reservation = StockReservation(
                    id=uuid4(),
                    stock_id=stock.id,
                    order_id=order_id,
                    quantity=qty,
                    expires_at=now + timedelta(seconds=ttl_seconds),
                    status=ReservationStatus.ACTIVE,
                )
                txn.reserve(
                    key,
                    qty,
                    reference_id=reservation.id,
                    reference_type=ReferenceType.RESERVATION,
                    payload=payload,
                )
                txn.session.add(reservation)
                txn.session.flush()
                logger.info(
                    "reservation_created",
                    extra={
                        "reservation_id": str(reservation.id),
                        "stock_id": str(stock.id),
                        "quantity": qty,
                        "expires_at": reservation.expires_at,
                    },
                )
                return reservation.to_snapshot()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def fulfill(self, reservation_id: UUID) -> ReservationSnapshot:
        """
        Consume the reserved units and mark the reservation FULFILLED.

        An overdue active reservation is expired instead (committed) and
        ReservationExpiredError is raised.

        Raises:
            ReservationNotFoundError: unknown id.
            ReservationNotActiveError: already terminal.
            ReservationExpiredError: past its deadline.
        """
        key = self._locate(reservation_id)
        with LogContext.bind(reservation_id=reservation_id, operation="fulfill"):
            with self._ledger.transaction(key) as txn:
                reservation = self._load_locked(txn, reservation_id)
                if not reservation.is_active:
                    raise ReservationNotActiveError(
                        str(reservation_id), reservation.status.value
                    )
                now = self._clock.now()
                if not reservation.is_due(now):
                    self._consume(txn, key, reservation, now)
                    return reservation.to_snapshot()
                self._release(txn, key, reservation, ReservationStatus.EXPIRED, now)
                expires_at = reservation.expires_at
            raise ReservationExpiredError(str(reservation_id), expires_at.isoformat())

    def cancel(self, reservation_id: UUID) -> ReservationResult:
        """Release the held units and mark the reservation CANCELLED.

        Idempotent: a terminal reservation yields ``ALREADY_FINALIZED``.
        """
        key = self._locate(reservation_id)
        with LogContext.bind(reservation_id=reservation_id, operation="cancel"):
            with self._ledger.transaction(key) as txn:
                reservation = self._load_locked(txn, reservation_id)
                if not reservation.is_active:
                    return self._already_finalized(reservation)
                self._release(
                    txn, key, reservation, ReservationStatus.CANCELLED, self._clock.now()
                )
                return ReservationResult(reservation.to_snapshot(), TransitionOutcome.APPLIED)

    def expire_if_due(
        self,
        reservation_id: UUID,
        now: datetime | None = None,
    ) -> ReservationResult:
        """Expire the reservation when ``expires_at <= now``.

        Returns ``ALREADY_FINALIZED`` for a terminal reservation and
        ``NOT_DUE`` for an active one whose deadline has not passed; neither
        is an error.
        """
        key = self._locate(reservation_id)
        with LogContext.bind(reservation_id=reservation_id, operation="expire"):
            with self._ledger.transaction(key) as txn:
                reservation = self._load_locked(txn, reservation_id)
                if not reservation.is_active:
                    return self._already_finalized(reservation)
                now = now or self._clock.now()
                if not reservation.is_due(now):
                    return ReservationResult(reservation.to_snapshot(), TransitionOutcome.NOT_DUE)
                self._release(txn, key, reservation, ReservationStatus.EXPIRED, now)
                return ReservationResult(reservation.to_snapshot(), TransitionOutcome.APPLIED)

    # ------------------------------------------------------------------
    # Order-wide transitions
    # ------------------------------------------------------------------

    def fulfill_for_order(self, order_id: UUID) -> list[ReservationSnapshot]:
        """
        Fulfil every active reservation of an order in one transaction.

        If any of them is overdue, the overdue ones are expired, nothing is
        fulfilled, and ReservationExpiredError is raised after commit.
        """
        keys = self._keys_for_order(order_id)
        if not keys:
            return []
        with LogContext.bind(order_id=order_id, operation="fulfill_for_order"):
            with self._ledger.transaction(*keys) as txn:
                now = self._clock.now()
                keys_by_stock = {txn.stock(k).id: k for k in keys}
                active = self._load_active_for_order(txn, order_id, keys_by_stock)
                overdue = [r for r in active if r.is_due(now)]
                if not overdue:
                    for reservation in active:
                        self._consume(txn, keys_by_stock[reservation.stock_id], reservation, now)
                    return [r.to_snapshot() for r in active]
                for reservation in overdue:
                    self._release(
                        txn,
                        keys_by_stock[reservation.stock_id],
                        reservation,
                        ReservationStatus.EXPIRED,
                        now,
                    )
                first = overdue[0]
                first_id, first_expires_at = first.id, first.expires_at
            raise ReservationExpiredError(str(first_id), first_expires_at.isoformat())

    def cancel_for_order(self, order_id: UUID) -> list[ReservationResult]:
        """Cancel every active reservation of an order in one transaction."""
        keys = self._keys_for_order(order_id)
        if not keys:
            return []
        with LogContext.bind(order_id=order_id, operation="cancel_for_order"):
            with self._ledger.transaction(*keys) as txn:
                now = self._clock.now()
                keys_by_stock = {txn.stock(k).id: k for k in keys}
                results = []
                for reservation in self._load_active_for_order(txn, order_id, keys_by_stock):
                    self._release(
                        txn,
                        keys_by_stock[reservation.stock_id],
                        reservation,
                        ReservationStatus.CANCELLED,
                        now,
                    )
                    results.append(
                        ReservationResult(reservation.to_snapshot(), TransitionOutcome.APPLIED)
                    )
                return results

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_reservation(self, reservation_id: UUID) -> ReservationSnapshot:
        with self._ledger.session_factory() as session:
            snapshot = ReservationSelector(session).get(reservation_id)
        if snapshot is None:
            raise ReservationNotFoundError(str(reservation_id))
        return snapshot

    def list_for_order(self, order_id: UUID) -> list[ReservationSnapshot]:
        with self._ledger.session_factory() as session:
            return ReservationSelector(session).list_for_order(order_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _locate(self, reservation_id: UUID) -> StockKey:
        """Stock key of a reservation, read without locks."""
        with self._ledger.session_factory() as session:
            row = session.execute(
                select(Stock.product_id, Stock.warehouse_id)
                .join(StockReservation, StockReservation.stock_id == Stock.id)
                .where(StockReservation.id == reservation_id)
            ).one_or_none()
        if row is None:
            raise ReservationNotFoundError(str(reservation_id))
        return StockKey(row.product_id, row.warehouse_id)

    def _keys_for_order(self, order_id: UUID) -> list[StockKey]:
        with self._ledger.session_factory() as session:
            rows = session.execute(
                select(Stock.product_id, Stock.warehouse_id)
                .join(StockReservation, StockReservation.stock_id == Stock.id)
                .where(
                    StockReservation.order_id == order_id,
                    StockReservation.status == ReservationStatus.ACTIVE,
                )
                .distinct()
            ).all()
        return sorted(StockKey(r.product_id, r.warehouse_id) for r in rows)

    @staticmethod
    def _load_locked(txn: LedgerTransaction, reservation_id: UUID) -> StockReservation:
        reservation = txn.session.execute(
            select(StockReservation)
            .where(StockReservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(str(reservation_id))
        return reservation

    @staticmethod
    def _load_active_for_order(
        txn: LedgerTransaction,
        order_id: UUID,
        keys_by_stock: dict[UUID, StockKey],
    ) -> list[StockReservation]:
        # Only rows locked by this transaction; later reservations wait for the next call
        return list(
            txn.session.execute(
                select(StockReservation)
                .where(
                    StockReservation.order_id == order_id,
                    StockReservation.status == ReservationStatus.ACTIVE,
                    StockReservation.stock_id.in_(list(keys_by_stock)),
                )
                .order_by(StockReservation.expires_at, StockReservation.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _consume(
        self,
        txn: LedgerTransaction,
        key: StockKey,
        reservation: StockReservation,
        now: datetime,
    ) -> None:
        txn.consume(
            key,
            reservation.quantity,
            reservation.id,
            reference_type=ReferenceType.RESERVATION,
            from_reserved=True,
        )
        reservation.finalize(ReservationStatus.FULFILLED, now)
        txn.session.flush()
        logger.info(
            "reservation_fulfilled",
            extra={"reservation_id": str(reservation.id), "quantity": reservation.quantity},
        )

    def _release(
        self,
        txn: LedgerTransaction,
        key: StockKey,
        reservation: StockReservation,
        status: ReservationStatus,
        now: datetime,
    ) -> None:
        txn.release_reserved(
            key,
            reservation.quantity,
            reference_id=reservation.id,
            reference_type=ReferenceType.RESERVATION,
        )
        reservation.finalize(status, now)
        txn.session.flush()
        logger.info(
            f"reservation_{status.value}",
            extra={"reservation_id": str(reservation.id), "quantity": reservation.quantity},
        )

    @staticmethod
    def _already_finalized(reservation: StockReservation) -> ReservationResult:
        logger.info(
            "reservation_already_finalized",
            extra={
                "reservation_id": str(reservation.id),
                "status": reservation.status.value,
            },
        )
        return ReservationResult(reservation.to_snapshot(), TransitionOutcome.ALREADY_FINALIZED)
