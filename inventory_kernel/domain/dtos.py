"""
Frozen data-transfer objects returned across the kernel boundary.

Services and selectors return these instead of ORM instances so callers
never hold a live (or detached) mapped object.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from inventory_kernel.domain.values import (
    MovementType,
    ReservationStatus,
    StockKey,
    TransitionOutcome,
)


@dataclass(frozen=True)
class WarehouseSnapshot:
    id: UUID
    name: str
    code: str
    address: str | None
    is_active: bool


@dataclass(frozen=True)
class StockSnapshot:
    id: UUID
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    reserved: int
    version: int

    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.warehouse_id)


@dataclass(frozen=True)
class MovementRecord:
    """One immutable ledger entry."""

    id: UUID
    stock_id: UUID
    sequence: int
    movement_type: MovementType
    quantity: int
    reference_id: UUID | None
    reference_type: str | None
    reason: str | None
    payload: dict[str, Any] | None
    created_at: datetime


@dataclass(frozen=True)
class LedgerResult:
    """
    Outcome of one ledger mutation.

    ``replayed`` is True when the call matched an already-recorded
    reference and nothing was applied.
    """

    movement: MovementRecord
    stock: StockSnapshot
    replayed: bool = False


@dataclass(frozen=True)
class TransferResult:
    correlation_id: UUID
    outbound: LedgerResult
    inbound: LedgerResult

    @property
    def replayed(self) -> bool:
        return self.outbound.replayed and self.inbound.replayed


@dataclass(frozen=True)
class ReservationSnapshot:
    id: UUID
    stock_id: UUID
    order_id: UUID
    quantity: int
    expires_at: datetime
    status: ReservationStatus
    finalized_at: datetime | None

    @property
    def is_active(self) -> bool:
        return self.status is ReservationStatus.ACTIVE


@dataclass(frozen=True)
class ReservationResult:
    """Reservation state after a cancel/expire request, with what happened."""

    reservation: ReservationSnapshot
    outcome: TransitionOutcome

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


@dataclass(frozen=True)
class SweepResult:
    scanned: int = 0
    expired: int = 0
    already_finalized: int = 0
    not_due: int = 0
    failed: int = 0
    batches: int = 0


@dataclass(frozen=True)
class ReconciliationReport:
    """Stored stock row versus what the ledger and reservations imply."""

    stock_id: UUID
    stored_quantity: int
    replayed_quantity: int
    stored_reserved: int
    active_reserved: int
    movement_count: int

    @property
    def quantity_matches(self) -> bool:
        return self.stored_quantity == self.replayed_quantity

    @property
    def reserved_matches(self) -> bool:
        return self.stored_reserved == self.active_reserved

    @property
    def is_consistent(self) -> bool:
        return self.quantity_matches and self.reserved_matches
