"""Composition root wiring configuration into the inventory kernel."""

from inventory_services.runtime import InventoryRuntime

__all__ = ["InventoryRuntime"]
