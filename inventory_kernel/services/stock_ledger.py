"""
StockLedger -- sole writer of stock quantity/reserved.

Responsibility:
    Applies every change to a stock row as one or more validated movements,
    atomically with the row update, while holding the row lock.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by ReservationManager (through ``transaction()``) and by
    warehouse/admin tooling (receive, adjust, transfer, consume).

Invariants enforced:
    - 0 <= reserved <= quantity: every new level is produced by a StockLevel
      transition, which raises before anything is written.
    - Atomicity: the stock UPDATE and its movement INSERT commit together or
      not at all (one database transaction per ``transaction()`` block).
    - Serialization: every mutation of a row happens while the row's key is
      held in the RowLockManager and the row is SELECTed FOR UPDATE.
      Multi-row operations lock in ascending StockKey order.
    - Idempotent replay: a call carrying a (reference_type, reference_id)
      already recorded for the same row and movement type is a no-op that
      returns the original movement with ``replayed=True``.

Failure modes:
    - InvalidQuantityError, InsufficientStockError, OverReservedError,
      InvariantViolationError from StockLevel transitions.
    - StockNotFoundError for a missing row (except receive / transfer
      destination, which open the row).
    - WarehouseInactiveError on inbound operations into an inactive warehouse.
    - LockTimeoutError after bounded retries of lock acquisition.
    - OptimisticLockError when the version check fails at flush/commit.

Audit relevance:
    Every committed mutation produces exactly one movement per touched row;
    the movement ``sequence`` is the row version it produced.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from inventory_kernel.db.engine import SessionFactory, is_postgres
from inventory_kernel.db.locking import RowLockManager
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    LedgerResult,
    MovementRecord,
    StockSnapshot,
    TransferResult,
)
from inventory_kernel.domain.values import (
    MovementType,
    ReferenceType,
    StockKey,
    StockLevel,
)
from inventory_kernel.exceptions import (
    InventoryKernelError,
    InvalidTransferError,
    LockTimeoutError,
    OptimisticLockError,
    StockNotFoundError,
    WarehouseInactiveError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.models.stock import Stock
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.movement_recorder import MovementRecorder

T = TypeVar("T")

logger = get_logger("services.stock_ledger")

# PostgreSQL SQLSTATEs: lock_not_available, deadlock_detected
_PG_LOCK_ERRORS = frozenset({"55P03", "40P01"})

_EVENT_NAMES = {
    MovementType.IN: "stock_received",
    MovementType.OUT: "stock_consumed",
    MovementType.ADJUST: "stock_adjusted",
    MovementType.TRANSFER: "stock_transferred",
    MovementType.RESERVE: "stock_reserved",
    MovementType.RELEASE: "stock_released",
}


@dataclass(frozen=True)
class LockingPolicy:
    """Bounded wait and retry settings for row lock acquisition."""

    timeout_seconds: float = 5.0
    max_retries: int = 3
    backoff_seconds: float = 0.05


def _is_lock_error(exc: OperationalError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _PG_LOCK_ERRORS:
        return True
    return "database is locked" in str(exc.orig).lower()


def _reference_type(value: ReferenceType | str | None) -> str | None:
    if isinstance(value, Enum):
        return value.value
    return value


class LedgerTransaction:
    """
    One open database transaction with a set of stock rows locked.

    Contract:
        Produced only by ``StockLedger.transaction()``.  Operations may be
        called any number of times on the locked keys; everything commits
        when the ``with`` block exits normally.

    Non-goals:
        - Does NOT commit, roll back, or release locks itself.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        stocks: dict[StockKey, Stock],
        keys: tuple[StockKey, ...],
    ):
        self._session = session
        self._clock = clock
        self._stocks = stocks
        self._keys = keys
        self._recorder = MovementRecorder(session, clock)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def recorder(self) -> MovementRecorder:
        return self._recorder

    def find(self, key: StockKey) -> Stock | None:
        self._require_locked(key)
        return self._stocks.get(key)

    def stock(self, key: StockKey) -> Stock:
        """The locked row for ``key``.

        Raises:
            StockNotFoundError: no row exists.
        """
        stock = self.find(key)
        if stock is None:
            raise StockNotFoundError(str(key.product_id), str(key.warehouse_id))
        return stock

    def add_stock(self, stock: Stock) -> None:
        """Register a row created inside this transaction."""
        self._require_locked(stock.key)
        self._session.add(stock)
        self._session.flush()
        self._stocks[stock.key] = stock

    def _inbound_stock(self, key: StockKey) -> Stock:
        """The locked row for ``key``, or an unsaved zero row when none exists.

        An unsaved row is only written by ``_persist_opened`` once the
        operation using it has passed validation.
        """
        stock = self.find(key)
        if stock is not None:
            return stock
        return Stock(
            id=uuid4(),
            product_id=key.product_id,
            warehouse_id=key.warehouse_id,
            quantity=0,
            reserved=0,
            version=0,
        )

    def _persist_opened(self, stock: Stock) -> None:
        if self._stocks.get(stock.key) is stock:
            return
        self._require_active_warehouse(stock.warehouse_id, "open_stock")
        self.add_stock(stock)
        logger.info(
            "stock_opened",
            extra={
                "stock_id": str(stock.id),
                "product_id": str(stock.product_id),
                "warehouse_id": str(stock.warehouse_id),
            },
        )

    def _require_locked(self, key: StockKey) -> None:
        if key not in self._keys:
            raise ValueError(f"Stock key {key} is not locked by this transaction")

    def _require_active_warehouse(self, warehouse_id: UUID, operation: str) -> None:
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        if not warehouse.is_active:
            raise WarehouseInactiveError(str(warehouse_id), operation)

    def _replayed(
        self,
        stock: Stock,
        movement_type: MovementType,
        reference_type: str | None,
        reference_id: UUID | None,
    ) -> LedgerResult | None:
        existing = self._recorder.find_by_reference(
            stock.id, movement_type, reference_type, reference_id
        )
        if existing is None:
            return None
        logger.info(
            "movement_replayed",
            extra={
                "stock_id": str(stock.id),
                "movement_id": str(existing.id),
                "movement_type": movement_type.value,
                "reference_type": reference_type,
                "reference_id": str(reference_id),
            },
        )
        return LedgerResult(
            movement=existing.to_record(),
            stock=stock.to_snapshot(),
            replayed=True,
        )

    def _apply(
        self,
        stock: Stock,
        movement_type: MovementType,
        level: StockLevel,
        delta: int,
        reference_id: UUID | None,
        reference_type: str | None,
        reason: str | None,
        payload: dict[str, Any] | None,
    ) -> LedgerResult:
        sequence = stock.apply_level(level)
        movement = StockMovement(
            stock_id=stock.id,
            sequence=sequence,
            movement_type=movement_type,
            quantity=delta,
            reference_id=reference_id,
            reference_type=reference_type if reference_id is not None else None,
            reason=reason,
            payload=payload,
            created_at=self._clock.now(),
        )
        self._recorder.record(movement)
        logger.info(
            _EVENT_NAMES[movement_type],
            extra={
                "stock_id": str(stock.id),
                "movement_id": str(movement.id),
                "delta": delta,
                "quantity": stock.quantity,
                "reserved": stock.reserved,
                "version": stock.version,
            },
        )
        return LedgerResult(movement=movement.to_record(), stock=stock.to_snapshot())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def receive(
        self,
        key: StockKey,
        qty: int,
        reason: str | None = None,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Increase on-hand quantity; emits an ``in`` movement."""
        stock = self._inbound_stock(key)
        ref_type = _reference_type(reference_type)
        replayed = self._replayed(stock, MovementType.IN, ref_type, reference_id)
        if replayed is not None:
            return replayed
        level = stock.level.receive(qty)
        self._require_active_warehouse(stock.warehouse_id, "receive")
        self._persist_opened(stock)
        return self._apply(
            stock, MovementType.IN, level, qty, reference_id, ref_type, reason, payload
        )

    def consume(
        self,
        key: StockKey,
        qty: int,
        reference_id: UUID | None = None,
        *,
        reference_type: ReferenceType | str | None = ReferenceType.ORDER,
        from_reserved: bool = False,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Decrease on-hand quantity (and reserved, if ``from_reserved``);
        emits an ``out`` movement."""
        stock = self.stock(key)
        ref_type = _reference_type(reference_type)
        replayed = self._replayed(stock, MovementType.OUT, ref_type, reference_id)
        if replayed is not None:
            return replayed
        level = stock.level.consume(qty, from_reserved=from_reserved)
        return self._apply(
            stock, MovementType.OUT, level, -qty, reference_id, ref_type, reason, payload
        )

    def adjust(
        self,
        key: StockKey,
        delta: int,
        reason: str | None = None,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Signed correction of on-hand quantity; emits an ``adjust`` movement."""
        stock = self.stock(key)
        ref_type = _reference_type(reference_type)
        replayed = self._replayed(stock, MovementType.ADJUST, ref_type, reference_id)
        if replayed is not None:
            return replayed
        level = stock.level.adjust(delta)
        return self._apply(
            stock, MovementType.ADJUST, level, delta, reference_id, ref_type, reason, payload
        )

    def reserve(
        self,
        key: StockKey,
        qty: int,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = ReferenceType.RESERVATION,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Increase reserved units only; emits a ``reserve`` movement."""
        stock = self.stock(key)
        ref_type = _reference_type(reference_type)
        replayed = self._replayed(stock, MovementType.RESERVE, ref_type, reference_id)
        if replayed is not None:
            return replayed
        level = stock.level.reserve(qty)
        self._require_active_warehouse(stock.warehouse_id, "reserve")
        return self._apply(
            stock, MovementType.RESERVE, level, qty, reference_id, ref_type, reason, payload
        )

    def release_reserved(
        self,
        key: StockKey,
        qty: int,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = ReferenceType.RESERVATION,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Decrease reserved units; emits a ``release`` movement."""
        stock = self.stock(key)
        ref_type = _reference_type(reference_type)
        replayed = self._replayed(stock, MovementType.RELEASE, ref_type, reference_id)
        if replayed is not None:
            return replayed
        level = stock.level.release(qty)
        return self._apply(
            stock, MovementType.RELEASE, level, -qty, reference_id, ref_type, reason, payload
        )

    def transfer(
        self,
        from_key: StockKey,
        to_key: StockKey,
        qty: int,
        reason: str | None = None,
        *,
        transfer_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TransferResult:
        """Move unreserved units between two rows of the same product.

        Emits a matched pair of ``transfer`` movements sharing the
        correlation id as their reference.
        """
        _validate_transfer_pair(from_key, to_key)
        source = self.stock(from_key)
        destination = self._inbound_stock(to_key)
        correlation_id = transfer_id or uuid4()
        ref_type = ReferenceType.TRANSFER.value

        if transfer_id is not None:
            out_replay = self._replayed(source, MovementType.TRANSFER, ref_type, transfer_id)
            in_replay = self._replayed(destination, MovementType.TRANSFER, ref_type, transfer_id)
            if out_replay is not None and in_replay is not None:
                return TransferResult(correlation_id, out_replay, in_replay)
            if self._recorder.list_by_reference(ref_type, transfer_id):
                raise InvalidTransferError(
                    f"transfer_id {transfer_id} already used for a different pair"
                )

        source_level = source.level.transfer_out(qty)
        destination_level = destination.level.transfer_in(qty)
        self._require_active_warehouse(destination.warehouse_id, "transfer_in")
        self._persist_opened(destination)

        outbound = self._apply(
            source, MovementType.TRANSFER, source_level, -qty,
            correlation_id, ref_type, reason, payload,
        )
        inbound = self._apply(
            destination, MovementType.TRANSFER, destination_level, qty,
            correlation_id, ref_type, reason, payload,
        )
        return TransferResult(correlation_id, outbound, inbound)


def _validate_transfer_pair(from_key: StockKey, to_key: StockKey) -> None:
    if from_key == to_key:
        raise InvalidTransferError("source and destination are the same stock row")
    if from_key.product_id != to_key.product_id:
        raise InvalidTransferError(
            f"product mismatch: {from_key.product_id} != {to_key.product_id}"
        )


class StockLedger:
    """
    Transactional front door to stock rows.

    Contract:
        Each public mutation runs in its own transaction with the affected
        rows locked.  ``transaction(*keys)`` exposes the same operations for
        callers (ReservationManager) that must commit additional rows in the
        same transaction.

    Guarantees:
        - Only lock acquisition is retried (bounded by LockingPolicy).
        - Any failure rolls back the whole logical operation.

    Non-goals:
        - Does NOT decide retry policy for callers; ConcurrencyError subclasses
          are retryable, everything else is definitive.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        lock_manager: RowLockManager,
        clock: Clock | None = None,
        policy: LockingPolicy | None = None,
    ):
        self._session_factory = session_factory
        self._locks = lock_manager
        self._clock = clock or SystemClock()
        self._policy = policy or LockingPolicy(timeout_seconds=lock_manager.timeout_seconds)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory

    # ------------------------------------------------------------------
    # Transaction scope
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, *keys: StockKey) -> Iterator[LedgerTransaction]:
        """
        Lock ``keys`` (ascending order), open a transaction, load the rows
        FOR UPDATE, and commit on normal exit.

        Raises:
            LockTimeoutError: locks not acquired after bounded retries.
            DeadlockAvoidedError: the calling thread already holds a lock
                ordered at or above one of ``keys``.
            OptimisticLockError: version conflict at flush/commit.
        """
        ordered = tuple(sorted(set(keys)))
        self._acquire_locks(ordered)
        try:
            session, stocks = self._open_locked(ordered)
            txn = LedgerTransaction(session, self._clock, stocks, ordered)
            try:
                yield txn
                session.commit()
            except StaleDataError as exc:
                session.rollback()
                logger.warning(
                    "ledger_version_conflict",
                    extra={"stock_keys": [str(k) for k in ordered]},
                )
                raise OptimisticLockError("Stock", ", ".join(str(k) for k in ordered)) from exc
            except OperationalError as exc:
                session.rollback()
                if _is_lock_error(exc):
                    raise LockTimeoutError(
                        ", ".join(str(k) for k in ordered), self._policy.timeout_seconds
                    ) from exc
                logger.warning("ledger_transaction_rolled_back", exc_info=True)
                raise
            except InventoryKernelError as exc:
                session.rollback()
                logger.info(
                    "ledger_transaction_rolled_back",
                    extra={
                        "error_code": exc.code,
                        "stock_keys": [str(k) for k in ordered],
                    },
                )
                raise
            except BaseException:
                session.rollback()
                logger.warning("ledger_transaction_rolled_back", exc_info=True)
                raise
            finally:
                session.close()
        finally:
            self._locks.release(ordered)

    def _acquire_locks(self, ordered: tuple[StockKey, ...]) -> None:
        attempts = self._policy.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                self._locks.acquire(ordered, self._policy.timeout_seconds)
                return
            except LockTimeoutError:
                if attempt == attempts:
                    logger.warning(
                        "lock_retries_exhausted",
                        extra={
                            "stock_keys": [str(k) for k in ordered],
                            "attempts": attempts,
                        },
                    )
                    raise
                time.sleep(self._policy.backoff_seconds * attempt)

    def _open_locked(
        self, ordered: tuple[StockKey, ...]
    ) -> tuple[Session, dict[StockKey, Stock]]:
        attempts = self._policy.max_retries + 1
        for attempt in range(1, attempts + 1):
            session = self._session_factory()
            try:
                if is_postgres(session):
                    timeout_ms = int(self._policy.timeout_seconds * 1000)
                    session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
                rows = session.execute(
                    select(Stock)
                    .where(
                        or_(
                            *(
                                and_(
                                    Stock.product_id == key.product_id,
                                    Stock.warehouse_id == key.warehouse_id,
                                )
                                for key in ordered
                            )
                        )
                    )
                    .order_by(Stock.product_id, Stock.warehouse_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalars().all()
                return session, {row.key: row for row in rows}
            except OperationalError as exc:
                session.rollback()
                session.close()
                if not _is_lock_error(exc):
                    raise
                if attempt == attempts:
                    raise LockTimeoutError(
                        ", ".join(str(k) for k in ordered), self._policy.timeout_seconds
                    ) from exc
                time.sleep(self._policy.backoff_seconds * attempt)
            except BaseException:
                session.close()
                raise
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Row lifecycle and reads
    # ------------------------------------------------------------------

    def open_stock(self, product_id: UUID, warehouse_id: UUID) -> StockSnapshot:
        """Get-or-create the row for (product, warehouse) with zero stock.

        Raises:
            WarehouseNotFoundError: unknown warehouse.
            WarehouseInactiveError: a new row would be created in an
                inactive warehouse.
        """
        key = StockKey(product_id, warehouse_id)

        def _open() -> StockSnapshot:
            with self.transaction(key) as txn:
                stock = txn._inbound_stock(key)
                txn._persist_opened(stock)
                return stock.to_snapshot()

        return self._run_opening(key, _open)

    def _run_opening(self, key: StockKey, run: Callable[[], T]) -> T:
        """Run an operation that may insert the row for ``key``.

        A unique violation means another process inserted the row between
        our SELECT and INSERT; the second attempt finds it.
        """
        try:
            return run()
        except IntegrityError:
            logger.info("stock_open_race_resolved", extra={"stock_key": str(key)})
            return run()

    def get_stock(self, key: StockKey) -> StockSnapshot:
        """Current snapshot of one row.

        Raises:
            StockNotFoundError: no row exists.
        """
        with self._session_factory() as session:
            snapshot = StockSelector(session).get_by_key(key)
        if snapshot is None:
            raise StockNotFoundError(str(key.product_id), str(key.warehouse_id))
        return snapshot

    def list_movements(
        self,
        key: StockKey,
        since: int | None = None,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        """Movements of one row in commit order (``since`` is an exclusive
        sequence number)."""
        with self._session_factory() as session:
            snapshot = StockSelector(session).get_by_key(key)
            if snapshot is None:
                raise StockNotFoundError(str(key.product_id), str(key.warehouse_id))
            return MovementRecorder(session, self._clock).list_by_stock(
                snapshot.id, since, limit
            )

    # ------------------------------------------------------------------
    # Single-operation transactions
    # ------------------------------------------------------------------

    def receive(
        self,
        key: StockKey,
        qty: int,
        reason: str | None = None,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        """Receive goods into a warehouse, opening the row if needed."""
        def _receive() -> LedgerResult:
            with self.transaction(key) as txn:
                return txn.receive(
                    key, qty, reason,
                    reference_id=reference_id,
                    reference_type=reference_type,
                    payload=payload,
                )

        with LogContext.bind(operation="receive"):
            return self._run_opening(key, _receive)

    def consume(
        self,
        key: StockKey,
        qty: int,
        reference_id: UUID | None = None,
        *,
        reference_type: ReferenceType | str | None = ReferenceType.ORDER,
        from_reserved: bool = False,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        with LogContext.bind(operation="consume"):
            with self.transaction(key) as txn:
                return txn.consume(
                    key, qty, reference_id,
                    reference_type=reference_type,
                    from_reserved=from_reserved,
                    reason=reason,
                    payload=payload,
                )

    def adjust(
        self,
        key: StockKey,
        delta: int,
        reason: str | None = None,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        with LogContext.bind(operation="adjust"):
            with self.transaction(key) as txn:
                return txn.adjust(
                    key, delta, reason,
                    reference_id=reference_id,
                    reference_type=reference_type,
                    payload=payload,
                )

    def transfer(
        self,
        from_key: StockKey,
        to_key: StockKey,
        qty: int,
        reason: str | None = None,
        *,
        transfer_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> TransferResult:
        """Atomically move unreserved units between warehouses.

        The destination row is opened if it does not exist yet.  No partial
        effect on failure.
        """
        _validate_transfer_pair(from_key, to_key)
        def _transfer() -> TransferResult:
            with self.transaction(from_key, to_key) as txn:
                return txn.transfer(
                    from_key, to_key, qty, reason,
                    transfer_id=transfer_id,
                    payload=payload,
                )

        with LogContext.bind(operation="transfer"):
            return self._run_opening(to_key, _transfer)

    def reserve(
        self,
        key: StockKey,
        qty: int,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = ReferenceType.RESERVATION,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        with LogContext.bind(operation="reserve"):
            with self.transaction(key) as txn:
                return txn.reserve(
                    key, qty,
                    reference_id=reference_id,
                    reference_type=reference_type,
                    payload=payload,
                )

    def release_reserved(
        self,
        key: StockKey,
        qty: int,
        *,
        reference_id: UUID | None = None,
        reference_type: ReferenceType | str | None = ReferenceType.RESERVATION,
        payload: dict[str, Any] | None = None,
    ) -> LedgerResult:
        with LogContext.bind(operation="release"):
            with self.transaction(key) as txn:
                return txn.release_reserved(
                    key, qty,
                    reference_id=reference_id,
                    reference_type=reference_type,
                    payload=payload,
                )
