"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only access to stock rows and warehouses.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
"""

from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.dtos import StockSnapshot, WarehouseSnapshot
from inventory_kernel.domain.values import StockKey
from inventory_kernel.models.stock import Stock
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.selectors.base import BaseSelector


class StockSelector(BaseSelector[Stock]):
    """Queries over stock rows."""

    def get_by_key(self, key: StockKey) -> StockSnapshot | None:
        stock = self.session.execute(
            select(Stock).where(
                Stock.product_id == key.product_id,
                Stock.warehouse_id == key.warehouse_id,
            )
        ).scalar_one_or_none()
        return stock.to_snapshot() if stock is not None else None

    def get_by_id(self, stock_id: UUID) -> StockSnapshot | None:
        stock = self.session.get(Stock, stock_id)
        return stock.to_snapshot() if stock is not None else None

    def list_for_product(self, product_id: UUID) -> list[StockSnapshot]:
        """All rows of one product across warehouses, ordered by warehouse."""
        rows = self.session.execute(
            select(Stock)
            .where(Stock.product_id == product_id)
            .order_by(Stock.warehouse_id)
        ).scalars()
        return [s.to_snapshot() for s in rows]

    def list_for_warehouse(self, warehouse_id: UUID) -> list[StockSnapshot]:
        rows = self.session.execute(
            select(Stock)
            .where(Stock.warehouse_id == warehouse_id)
            .order_by(Stock.product_id)
        ).scalars()
        return [s.to_snapshot() for s in rows]

    def list_ids(self) -> list[UUID]:
        """Ids of every stock row, in a stable order."""
        return list(
            self.session.execute(select(Stock.id).order_by(Stock.id)).scalars()
        )

    def total_available(self, product_id: UUID) -> int:
        """Available units of a product summed over active warehouses."""
        rows = self.session.execute(
            select(Stock)
            .join(Warehouse, Warehouse.id == Stock.warehouse_id)
            .where(Stock.product_id == product_id, Warehouse.is_active.is_(True))
        ).scalars()
        return sum(s.available for s in rows)


class WarehouseSelector(BaseSelector[Warehouse]):
    """Queries over warehouses."""

    def get_by_id(self, warehouse_id: UUID) -> WarehouseSnapshot | None:
        warehouse = self.session.get(Warehouse, warehouse_id)
        return warehouse.to_snapshot() if warehouse is not None else None

    def get_by_code(self, code: str) -> WarehouseSnapshot | None:
        warehouse = self.session.execute(
            select(Warehouse).where(Warehouse.code == code.strip().upper())
        ).scalar_one_or_none()
        return warehouse.to_snapshot() if warehouse is not None else None

    def list_active(self) -> list[WarehouseSnapshot]:
        rows = self.session.execute(
            select(Warehouse)
            .where(Warehouse.is_active.is_(True))
            .order_by(Warehouse.code)
        ).scalars()
        return [w.to_snapshot() for w in rows]
