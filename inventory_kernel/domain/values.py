"""
Value types for the stock ledger.

Responsibility:
    Immutable value objects shared by models, services and selectors:
    the stock row key, movement and reservation enumerations, and
    ``StockLevel`` -- the pure (quantity, reserved) pair whose transition
    methods are the single place where stock arithmetic is validated.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``0 <= reserved <= quantity`` for every StockLevel that can exist.
      Construction of a level outside those bounds raises
      InvariantViolationError; transitions raise the typed error that
      describes why the requested change is impossible.
    - ``available`` is derived, never stored.
"""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    InvariantViolationError,
    OverReservedError,
)


@dataclass(frozen=True, order=True)
class StockKey:
    """
    Identity of a stock row: one product in one warehouse.

    Ordering is the global lock order used for multi-row operations.
    """

    product_id: UUID
    warehouse_id: UUID

    def __str__(self) -> str:
        return f"{self.product_id}@{self.warehouse_id}"


class MovementType(str, Enum):
    """Kind of stock-affecting event recorded in the movement ledger."""

    IN = "in"
    OUT = "out"
    ADJUST = "adjust"
    TRANSFER = "transfer"
    RESERVE = "reserve"
    RELEASE = "release"

    @property
    def affects_quantity(self) -> bool:
        """True when the movement quantity is a delta of on-hand quantity."""
        return self not in (MovementType.RESERVE, MovementType.RELEASE)


class ReservationStatus(str, Enum):
    """
    Reservation lifecycle.  ACTIVE is the only entry state; the other three
    are terminal and reached exactly once.
    """

    ACTIVE = "active"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ReservationStatus.ACTIVE


class TransitionOutcome(str, Enum):
    """Result of an idempotent reservation transition request."""

    APPLIED = "applied"
    ALREADY_FINALIZED = "already_finalized"
    NOT_DUE = "not_due"


class ReferenceType(str, Enum):
    """Well-known movement reference types."""

    RESERVATION = "reservation"
    ORDER = "order"
    TRANSFER = "transfer"


@dataclass(frozen=True)
class StockLevel:
    """
    The (quantity, reserved) pair of one stock row.

    Contract:
        Each transition returns a NEW StockLevel or raises; the receiver is
        never modified.  ``ref`` names the row in error messages and does not
        take part in equality.
    """

    quantity: int
    reserved: int
    ref: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if self.reserved < 0:
            raise InvariantViolationError(
                self.ref, "reserved is negative", self.quantity, self.reserved
            )
        if self.quantity < 0:
            raise InvariantViolationError(
                self.ref, "quantity is negative", self.quantity, self.reserved
            )
        if self.reserved > self.quantity:
            raise InvariantViolationError(
                self.ref, "reserved exceeds quantity", self.quantity, self.reserved
            )

    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    def _with(self, quantity: int, reserved: int) -> "StockLevel":
        return StockLevel(quantity=quantity, reserved=reserved, ref=self.ref)

    def receive(self, qty: int) -> "StockLevel":
        _require_positive("receive", qty)
        return self._with(self.quantity + qty, self.reserved)

    def consume(self, qty: int, from_reserved: bool = False) -> "StockLevel":
        """Remove units from on-hand stock.

        With ``from_reserved`` the units come out of the reserved portion
        (fulfilment); otherwise only unreserved units may be taken.
        """
        _require_positive("consume", qty)
        if from_reserved:
            if qty > self.reserved:
                raise InvariantViolationError(
                    self.ref,
                    f"consuming {qty} reserved units but only {self.reserved} reserved",
                    self.quantity,
                    self.reserved,
                )
            return self._with(self.quantity - qty, self.reserved - qty)
        if qty > self.quantity:
            raise InsufficientStockError(self.ref, qty, self.quantity)
        if self.quantity - qty < self.reserved:
            raise OverReservedError(self.ref, qty, self.quantity, self.reserved)
        return self._with(self.quantity - qty, self.reserved)

    def adjust(self, delta: int) -> "StockLevel":
        """Signed correction of on-hand quantity (stocktake)."""
        if delta == 0:
            raise InvalidQuantityError("adjust", delta)
        new_quantity = self.quantity + delta
        if new_quantity < 0:
            raise InsufficientStockError(self.ref, -delta, self.quantity)
        if new_quantity < self.reserved:
            raise OverReservedError(self.ref, -delta, self.quantity, self.reserved)
        return self._with(new_quantity, self.reserved)

    def transfer_out(self, qty: int) -> "StockLevel":
        """Outbound transfer leg: only unreserved units may leave."""
        _require_positive("transfer", qty)
        if qty > self.available:
            raise InsufficientStockError(self.ref, qty, self.available)
        return self._with(self.quantity - qty, self.reserved)

    def transfer_in(self, qty: int) -> "StockLevel":
        _require_positive("transfer", qty)
        return self._with(self.quantity + qty, self.reserved)

    def reserve(self, qty: int) -> "StockLevel":
        _require_positive("reserve", qty)
        if qty > self.available:
            raise InsufficientStockError(self.ref, qty, self.available)
        return self._with(self.quantity, self.reserved + qty)

    def release(self, qty: int) -> "StockLevel":
        _require_positive("release", qty)
        if qty > self.reserved:
            raise InvariantViolationError(
                self.ref,
                f"releasing {qty} but only {self.reserved} reserved",
                self.quantity,
                self.reserved,
            )
        return self._with(self.quantity, self.reserved - qty)


def _require_positive(operation: str, qty: int) -> None:
    if qty <= 0:
        raise InvalidQuantityError(operation, qty)
