"""
Service layer for Warehouse operations.

Registers warehouses and toggles their active flag.  Returns
WarehouseSnapshot DTOs instead of ORM entities.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.db.engine import SessionFactory, session_scope
from inventory_kernel.domain.dtos import WarehouseSnapshot
from inventory_kernel.exceptions import (
    DuplicateWarehouseCodeError,
    WarehouseNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.warehouse import Warehouse
from inventory_kernel.selectors.stock_selector import WarehouseSelector

logger = get_logger("services.warehouse")


class WarehouseService:
    """
    Service for managing warehouses.

    An inactive warehouse keeps its stock rows; StockLedger refuses inbound
    operations into it while outbound ones drain held stock.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def register(
        self,
        name: str,
        code: str,
        address: str | None = None,
    ) -> WarehouseSnapshot:
        """Create an active warehouse.

        Raises:
            WarehouseValidationError: invalid name or code.
            DuplicateWarehouseCodeError: code already registered.
        """
        warehouse = Warehouse(name=name, code=code, address=address, is_active=True)
        try:
            with session_scope(self._session_factory) as session:
                exists = session.execute(
                    select(Warehouse.id).where(Warehouse.code == warehouse.code)
                ).first()
                if exists is not None:
                    raise DuplicateWarehouseCodeError(warehouse.code)
                session.add(warehouse)
                session.flush()
                snapshot = warehouse.to_snapshot()
        except IntegrityError as exc:
            raise DuplicateWarehouseCodeError(warehouse.code) from exc

        logger.info(
            "warehouse_registered",
            extra={"warehouse_id": str(snapshot.id), "warehouse_code": snapshot.code},
        )
        return snapshot

    def activate(self, warehouse_id: UUID) -> WarehouseSnapshot:
        return self._set_active(warehouse_id, True)

    def deactivate(self, warehouse_id: UUID) -> WarehouseSnapshot:
        """Stop inbound stock into the warehouse; existing rows are kept."""
        return self._set_active(warehouse_id, False)

    def _set_active(self, warehouse_id: UUID, active: bool) -> WarehouseSnapshot:
        with session_scope(self._session_factory) as session:
            warehouse = session.get(Warehouse, warehouse_id)
            if warehouse is None:
                raise WarehouseNotFoundError(str(warehouse_id))
            changed = warehouse.is_active != active
            warehouse.is_active = active
            snapshot = warehouse.to_snapshot()
        if changed:
            logger.info(
                "warehouse_activated" if active else "warehouse_deactivated",
                extra={"warehouse_id": str(warehouse_id)},
            )
        return snapshot

    def get(self, warehouse_id: UUID) -> WarehouseSnapshot:
        with self._session_factory() as session:
            snapshot = WarehouseSelector(session).get_by_id(warehouse_id)
        if snapshot is None:
            raise WarehouseNotFoundError(str(warehouse_id))
        return snapshot

    def get_by_code(self, code: str) -> WarehouseSnapshot:
        with self._session_factory() as session:
            snapshot = WarehouseSelector(session).get_by_code(code)
        if snapshot is None:
            raise WarehouseNotFoundError(code)
        return snapshot

    def list_active(self) -> list[WarehouseSnapshot]:
        with self._session_factory() as session:
            return WarehouseSelector(session).list_active()
