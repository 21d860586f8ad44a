"""
Config -> Kernel Bridges.

Functions that convert an InventoryConfig into kernel constructor inputs.
These live in inventory_config (the producer) because the kernel must
NEVER import inventory_config.

Usage:
    from inventory_config.bridges import build_engine, build_lock_manager

    config = get_active_config()
    engine = build_engine(config)
    locks = build_lock_manager(config)
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import Engine

from inventory_config.schema import InventoryConfig
from inventory_kernel.db.engine import create_engine_from_url
from inventory_kernel.db.locking import RowLockManager
from inventory_kernel.services.reservation_manager import ReservationPolicy
from inventory_kernel.services.stock_ledger import LockingPolicy


def build_engine(config: InventoryConfig) -> Engine:
    db = config.database
    return create_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )


def build_lock_manager(config: InventoryConfig) -> RowLockManager:
    return RowLockManager(timeout_seconds=config.locking.timeout_seconds)


def build_locking_policy(config: InventoryConfig) -> LockingPolicy:
    return LockingPolicy(
        timeout_seconds=config.locking.timeout_seconds,
        max_retries=config.locking.max_retries,
        backoff_seconds=config.locking.backoff_seconds,
    )


def build_reservation_policy(config: InventoryConfig) -> ReservationPolicy:
    return ReservationPolicy(
        default_ttl_seconds=config.reservations.default_ttl_seconds,
        max_ttl_seconds=config.reservations.max_ttl_seconds,
    )


def sweeper_settings(config: InventoryConfig) -> dict[str, Any]:
    """Keyword arguments for ExpirySweeper."""
    return {
        "interval_seconds": config.sweeper.interval_seconds,
        "batch_size": config.sweeper.batch_size,
        "max_batches_per_tick": config.sweeper.max_batches_per_tick,
    }
