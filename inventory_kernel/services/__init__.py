"""
Kernel services.

Services own transaction boundaries (StockLedger, WarehouseService) or work
inside a transaction owned by someone else (MovementRecorder).
"""

from inventory_kernel.services.expiry_sweeper import ExpirySweeper
from inventory_kernel.services.movement_recorder import MovementRecorder
from inventory_kernel.services.reconciliation_service import ReconciliationService
from inventory_kernel.services.reservation_manager import (
    ReservationManager,
    ReservationPolicy,
)
from inventory_kernel.services.stock_ledger import (
    LedgerTransaction,
    LockingPolicy,
    StockLedger,
)
from inventory_kernel.services.warehouse_service import WarehouseService

__all__ = [
    "ExpirySweeper",
    "LedgerTransaction",
    "LockingPolicy",
    "MovementRecorder",
    "ReconciliationService",
    "ReservationManager",
    "ReservationPolicy",
    "StockLedger",
    "WarehouseService",
]
