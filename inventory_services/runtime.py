"""
InventoryRuntime -- composition root for the inventory engine.

Responsibility:
    Builds the engine, session factory, lock manager and every kernel
    service from one InventoryConfig and owns their lifetime (sweeper
    thread, connection pool).

Architecture position:
    Services.  Imports inventory_config and inventory_kernel; nothing in the
    kernel imports this package.

Invariants enforced:
    - One RowLockManager per runtime, shared by every service that writes
      stock, so in-process serialization covers all writers.
    - Immutability listeners are registered before any session is used.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory_config import InventoryConfig, get_active_config
from inventory_config.bridges import (
    build_engine,
    build_lock_manager,
    build_locking_policy,
    build_reservation_policy,
    sweeper_settings,
)
from inventory_kernel.db.engine import create_session_factory, create_tables
from inventory_kernel.db.immutability import register_immutability_listeners
from inventory_kernel.db.locking import RowLockManager
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import configure_logging, get_logger
from inventory_kernel.services.expiry_sweeper import ExpirySweeper
from inventory_kernel.services.reconciliation_service import ReconciliationService
from inventory_kernel.services.reservation_manager import ReservationManager
from inventory_kernel.services.stock_ledger import StockLedger
from inventory_kernel.services.warehouse_service import WarehouseService

logger = get_logger("services.runtime")


@dataclass
class InventoryRuntime:
    """Wired services sharing one engine, session factory and lock manager."""

    config: InventoryConfig
    engine: Engine
    session_factory: sessionmaker[Session]
    locks: RowLockManager
    clock: Clock
    ledger: StockLedger
    reservations: ReservationManager
    warehouses: WarehouseService
    reconciliation: ReconciliationService
    sweeper: ExpirySweeper

    @classmethod
    def from_config(
        cls,
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
        engine: Engine | None = None,
        configure_logs: bool = True,
    ) -> "InventoryRuntime":
        """Build a runtime.

        Args:
            config: Defaults to ``get_active_config()``.
            clock: Defaults to SystemClock.
            engine: Pre-built engine (tests); otherwise built from config.
            configure_logs: Install the JSON log handler at the configured
                level.
        """
        config = config or get_active_config()
        if configure_logs:
            configure_logging(level=config.logging.level)
        clock = clock or SystemClock()
        engine = engine or build_engine(config)

        register_immutability_listeners()
        if config.database.create_tables:
            create_tables(engine)

        session_factory = create_session_factory(engine)
        locks = build_lock_manager(config)
        ledger = StockLedger(session_factory, locks, clock, build_locking_policy(config))
        reservations = ReservationManager(ledger, clock, build_reservation_policy(config))
        runtime = cls(
            config=config,
            engine=engine,
            session_factory=session_factory,
            locks=locks,
            clock=clock,
            ledger=ledger,
            reservations=reservations,
            warehouses=WarehouseService(session_factory),
            reconciliation=ReconciliationService(session_factory, clock),
            sweeper=ExpirySweeper(
                session_factory, reservations, clock, **sweeper_settings(config)
            ),
        )
        logger.info(
            "runtime_started",
            extra={"config_id": config.config_id, "dialect": engine.dialect.name},
        )
        return runtime

    def start_sweeper(self) -> None:
        if self.config.sweeper.enabled:
            self.sweeper.start()

    def close(self) -> None:
        """Stop the sweeper and dispose of the connection pool."""
        self.sweeper.stop()
        self.engine.dispose()
        logger.info("runtime_closed")

    def __enter__(self) -> "InventoryRuntime":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
