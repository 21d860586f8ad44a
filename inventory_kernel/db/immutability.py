"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement ledger is the audit trail and the basis for replaying stock
quantities.  It is only trustworthy if rows, once written, never change.
Likewise a reservation that reached a terminal status must stay exactly as
it was finalized, and a stock row, once created, is never hard-deleted.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                      | Why
------------------|-------------------------------------|---------------------------
StockMovement     | ALWAYS (from creation)              | Ledger is the audit trail
StockReservation  | After status is terminal            | One-way state machine
Stock             | DELETE always                       | Zero quantity is valid state
Warehouse         | name/code + DELETE once referenced  | Stock rows point at it

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY ALLOW updated_at CHANGES?
   It is row metadata, not inventory data.

2. WHY CHECK "WAS TERMINAL" NOT "IS TERMINAL"?
   The finalize() call itself sets the terminal status.  We allow the
   ACTIVE -> terminal transition and block anything after it, detected via
   SQLAlchemy's attribute history.

3. WHY INLINE IMPORTS?
   Avoids circular imports between db/ and models/.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

    # TESTS ONLY:
    unregister_immutability_listeners()
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at"})


def _block(entity_type: str, entity_id, operation: str, reason: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_movement_immutability(mapper, connection, target):
    """Prevent any updates to StockMovement records."""
    _block(
        "StockMovement",
        target.id,
        "UPDATE",
        "Stock movements are append-only and cannot be modified",
    )


def _check_movement_delete(mapper, connection, target):
    """Prevent deletion of StockMovement records."""
    _block(
        "StockMovement",
        target.id,
        "DELETE",
        "Stock movements are append-only and cannot be deleted",
    )


def _check_reservation_immutability(mapper, connection, target):
    """
    Prevent updates to reservations that were already terminal.

    Logic:
        1. status changing FROM a terminal value: block.
        2. status unchanged AND terminal: block (other field changing).
        3. status changing ACTIVE -> terminal: allow (this IS the finalization).
    """
    from inventory_kernel.domain.values import ReservationStatus

    status_history = get_history(target, "status")

    was_terminal = False
    if status_history.deleted:
        old_status = ReservationStatus(status_history.deleted[0])
        was_terminal = old_status.is_terminal
    elif not status_history.added:
        was_terminal = ReservationStatus(target.status).is_terminal

    if not was_terminal:
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "StockReservation",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a finalized reservation",
                field=attr.key,
            )


def _check_stock_delete(mapper, connection, target):
    """Stock rows are never hard-deleted."""
    _block(
        "Stock",
        target.id,
        "DELETE",
        "Stock rows are never deleted; zero quantity is a valid state",
    )


def _warehouse_is_referenced(connection, warehouse_id) -> bool:
    from inventory_kernel.models.stock import Stock

    count = connection.execute(
        select(func.count()).select_from(Stock.__table__).where(
            Stock.__table__.c.warehouse_id == str(warehouse_id)
        )
    ).scalar()
    return bool(count)


def _check_warehouse_immutability(mapper, connection, target):
    """Block name/code changes once stock references the warehouse."""
    changed = [
        key for key in ("name", "code")
        if get_history(target, key).has_changes()
    ]
    if not changed:
        return
    if _warehouse_is_referenced(connection, target.id):
        _block(
            "Warehouse",
            target.id,
            "UPDATE",
            f"Cannot change {', '.join(changed)} of a warehouse referenced by stock",
            fields=changed,
        )


def _check_warehouse_delete(mapper, connection, target):
    if _warehouse_is_referenced(connection, target.id):
        _block(
            "Warehouse",
            target.id,
            "DELETE",
            "Cannot delete a warehouse referenced by stock",
        )


def _listeners():
    from inventory_kernel.models.movement import StockMovement
    from inventory_kernel.models.reservation import StockReservation
    from inventory_kernel.models.stock import Stock
    from inventory_kernel.models.warehouse import Warehouse

    return (
        (StockMovement, "before_update", _check_movement_immutability),
        (StockMovement, "before_delete", _check_movement_delete),
        (StockReservation, "before_update", _check_reservation_immutability),
        (Stock, "before_delete", _check_stock_delete),
        (Warehouse, "before_update", _check_warehouse_immutability),
        (Warehouse, "before_delete", _check_warehouse_delete),
    )


def register_immutability_listeners() -> None:
    """Register all immutability enforcement event listeners (idempotent)."""
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
    logger.debug("immutability_listeners_unregistered")
