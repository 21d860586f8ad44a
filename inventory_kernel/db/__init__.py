"""Database layer - engine, base classes, immutability, and row locking."""

from inventory_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from inventory_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)
from inventory_kernel.db.locking import RowLockManager

__all__ = [
    "Base",
    "RowLockManager",
    "TrackedBase",
    "UTCDateTime",
    "UUID",
    "UUIDString",
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
]
