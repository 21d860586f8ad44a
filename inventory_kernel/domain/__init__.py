"""
Pure domain layer.

Value objects, DTOs and the clock abstraction, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (other than SystemClock)

All domain objects are immutable and deterministic.
"""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.dtos import (
    LedgerResult,
    MovementRecord,
    ReconciliationReport,
    ReservationResult,
    ReservationSnapshot,
    StockSnapshot,
    SweepResult,
    TransferResult,
    WarehouseSnapshot,
)
from inventory_kernel.domain.values import (
    MovementType,
    ReferenceType,
    ReservationStatus,
    StockKey,
    StockLevel,
    TransitionOutcome,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "LedgerResult",
    "MovementRecord",
    "MovementType",
    "ReconciliationReport",
    "ReferenceType",
    "ReservationResult",
    "ReservationSnapshot",
    "ReservationStatus",
    "StockKey",
    "StockLevel",
    "StockSnapshot",
    "SweepResult",
    "SystemClock",
    "TransferResult",
    "TransitionOutcome",
    "WarehouseSnapshot",
]
