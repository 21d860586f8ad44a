"""Read-only selectors for inventory data."""

from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.selectors.stock_selector import StockSelector, WarehouseSelector

__all__ = [
    "BaseSelector",
    "ReservationSelector",
    "StockSelector",
    "WarehouseSelector",
]
