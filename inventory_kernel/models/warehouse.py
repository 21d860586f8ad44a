"""
Module: inventory_kernel.models.warehouse
Responsibility: ORM persistence for warehouse locations that hold stock.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ value types and exceptions only.

Invariants enforced:
    - code is unique, 1..50 characters, stored upper-cased.
    - name is 1..255 characters.
    - name and code are immutable once any stock row references the
      warehouse (db/immutability.py).

Failure modes:
    - WarehouseValidationError on an invalid name or code assignment.
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from inventory_kernel.db.base import TrackedBase
from inventory_kernel.domain.dtos import WarehouseSnapshot
from inventory_kernel.exceptions import WarehouseValidationError

NAME_MAX_LENGTH = 255
CODE_MAX_LENGTH = 50


class Warehouse(TrackedBase):
    """
    Physical or logical location that stocks products.

    Contract:
        Validation runs on attribute assignment (including construction),
        so an invalid Warehouse instance cannot be built.
    """

    __tablename__ = "warehouses"

    __table_args__ = (
        UniqueConstraint("code", name="uq_warehouse_code"),
    )

    name: Mapped[str] = mapped_column(
        String(NAME_MAX_LENGTH),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(
        String(CODE_MAX_LENGTH),
        nullable=False,
    )

    address: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    @validates("name")
    def _validate_name(self, key: str, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise WarehouseValidationError("name", "must not be empty")
        if len(value) > NAME_MAX_LENGTH:
            raise WarehouseValidationError(
                "name", f"must be at most {NAME_MAX_LENGTH} characters"
            )
        return value

    @validates("code")
    def _validate_code(self, key: str, value: str) -> str:
        value = (value or "").strip().upper()
        if not value:
            raise WarehouseValidationError("code", "must not be empty")
        if len(value) > CODE_MAX_LENGTH:
            raise WarehouseValidationError(
                "code", f"must be at most {CODE_MAX_LENGTH} characters"
            )
        return value

    @validates("address")
    def _validate_address(self, key: str, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}: {'active' if self.is_active else 'inactive'}>"

    def to_snapshot(self) -> WarehouseSnapshot:
        return WarehouseSnapshot(
            id=self.id,
            name=self.name,
            code=self.code,
            address=self.address,
            is_active=self.is_active,
        )
