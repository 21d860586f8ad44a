"""
Module: inventory_kernel.models.stock
Responsibility: ORM persistence for the authoritative (quantity, reserved)
    pair of one product in one warehouse.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ value types and exceptions only.

Invariants enforced:
    - (product_id, warehouse_id) is unique.
    - 0 <= reserved <= quantity: CHECK constraints in the database, and
      StockLevel validation before any assignment via apply_level().
    - version increases by exactly one per mutation and is the optimistic
      concurrency token (a stale UPDATE raises StaleDataError).
    - Rows are never deleted (db/immutability.py).

Failure modes:
    - InvariantViolationError when the persisted pair is out of bounds
      (data corruption) at the moment it is read through ``level``.
"""

from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UUIDString
from inventory_kernel.domain.dtos import StockSnapshot
from inventory_kernel.domain.values import StockKey, StockLevel


class Stock(TrackedBase):
    """
    Stock row -- the unit of contention.

    Contract:
        Only StockLedger writes ``quantity``/``reserved``, and only through
        ``apply_level()``, which also advances ``version``.

    Non-goals:
        - ``available`` is derived and never stored.
    """

    __tablename__ = "stocks"

    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_stock_product_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_stock_reserved_non_negative"),
        CheckConstraint("reserved <= quantity", name="ck_stock_reserved_le_quantity"),
        Index("idx_stock_warehouse", "warehouse_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    # On-hand units
    quantity: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    # Units held by active reservations
    reserved: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    version: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    def __repr__(self) -> str:
        return (
            f"<Stock {self.product_id}@{self.warehouse_id}: "
            f"qty={self.quantity} reserved={self.reserved} v{self.version}>"
        )

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.warehouse_id)

    @property
    def level(self) -> StockLevel:
        return StockLevel(quantity=self.quantity, reserved=self.reserved, ref=str(self.id))

    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    def apply_level(self, level: StockLevel) -> int:
        """Assign a validated level and advance the version.

        Returns:
            The new version, used as the movement sequence number.
        """
        self.quantity = level.quantity
        self.reserved = level.reserved
        self.version = (self.version or 0) + 1
        return self.version

    def to_snapshot(self) -> StockSnapshot:
        return StockSnapshot(
            id=self.id,
            product_id=self.product_id,
            warehouse_id=self.warehouse_id,
            quantity=self.quantity,
            reserved=self.reserved,
            version=self.version,
        )
