"""ORM models for the inventory kernel."""

from inventory_kernel.models.movement import StockMovement
from inventory_kernel.models.reservation import StockReservation
from inventory_kernel.models.stock import Stock
from inventory_kernel.models.warehouse import Warehouse

__all__ = [
    "Stock",
    "StockMovement",
    "StockReservation",
    "Warehouse",
]
