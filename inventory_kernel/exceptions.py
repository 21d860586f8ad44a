"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Order workflows decide whether to retry, back off, or give up based on what
went wrong.  That decision must never depend on parsing message strings:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Every exception has a RETRYABLE flag (transient vs definitive)
  4. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        manager.create_reservation(...)
    except Exception as e:
        if "insufficient" in str(e):  # FRAGILE
            reject_order()

Example - RIGHT way:
    try:
        manager.create_reservation(...)
    except InsufficientStockError as e:
        reject_order(available=e.available)
    except ConcurrencyError:
        retry_with_backoff()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- StockError
    |   +-- StockNotFoundError
    |   +-- InvalidQuantityError
    |   +-- InsufficientStockError
    |   +-- OverReservedError
    |   +-- InvariantViolationError
    |   +-- InvalidTransferError
    |
    +-- WarehouseError
    |   +-- WarehouseNotFoundError
    |   +-- WarehouseInactiveError
    |   +-- DuplicateWarehouseCodeError
    |   +-- WarehouseValidationError
    |
    +-- ReservationError
    |   +-- ReservationNotFoundError
    |   +-- ReservationNotActiveError
    |   |   +-- ReservationExpiredError
    |   +-- DuplicateReservationError
    |   +-- InvalidReservationTTLError
    |
    +-- ConcurrencyError            (retryable)
    |   +-- LockTimeoutError
    |   +-- DeadlockAvoidedError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                      | Retry | When Raised
--------------|---------------------------|-------|------------------------------
Stock         | STOCK_NOT_FOUND           | no    | No row for (product, warehouse)
              | INVALID_QUANTITY          | no    | Non-positive quantity supplied
              | INSUFFICIENT_STOCK        | no    | Available cannot satisfy request
              | OVER_RESERVED             | no    | Would leave reserved > quantity
              | INVARIANT_VIOLATION       | no    | reserved/quantity bounds broken
              | INVALID_TRANSFER          | no    | Same warehouse / product mismatch
--------------|---------------------------|-------|------------------------------
Warehouse     | WAREHOUSE_NOT_FOUND       | no    | Warehouse ID/code doesn't exist
              | WAREHOUSE_INACTIVE        | no    | Inbound op on inactive warehouse
              | DUPLICATE_WAREHOUSE_CODE  | no    | Code already registered
              | WAREHOUSE_VALIDATION      | no    | Name/code fails validation
--------------|---------------------------|-------|------------------------------
Reservation   | RESERVATION_NOT_FOUND     | no    | Reservation ID doesn't exist
              | RESERVATION_NOT_ACTIVE    | no    | Already terminal
              | RESERVATION_EXPIRED       | no    | Fulfil attempted past deadline
              | DUPLICATE_RESERVATION     | no    | Active hold exists, other qty
              | INVALID_RESERVATION_TTL   | no    | TTL <= 0 or above maximum
--------------|---------------------------|-------|------------------------------
Concurrency   | LOCK_TIMEOUT              | yes   | Row lock wait exceeded timeout
              | DEADLOCK_AVOIDED          | yes   | Lock ordering violation
              | OPTIMISTIC_LOCK_CONFLICT  | yes   | Stale version at commit
--------------|---------------------------|-------|------------------------------
Immutability  | IMMUTABILITY_VIOLATION    | no    | Movement/terminal record edited

===============================================================================
"""


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification and a ``retryable`` flag.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    retryable: bool = False


# Stock-related exceptions


class StockError(InventoryKernelError):
    """Base exception for stock row errors."""

    code: str = "STOCK_ERROR"


class StockNotFoundError(StockError):
    """No stock row exists for the given product/warehouse."""

    code: str = "STOCK_NOT_FOUND"

    def __init__(
        self,
        product_id: str | None = None,
        warehouse_id: str | None = None,
        stock_id: str | None = None,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.stock_id = stock_id
        if stock_id is not None:
            message = f"Stock row {stock_id} does not exist"
        else:
            message = f"No stock row for product {product_id} in warehouse {warehouse_id}"
        super().__init__(message)


class InvalidQuantityError(StockError):
    """A non-positive quantity was supplied where a positive one is required."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, operation: str, quantity: int):
        self.operation = operation
        self.quantity = quantity
        super().__init__(
            f"Invalid quantity {quantity} for {operation}: must be positive"
        )


class InsufficientStockError(StockError):
    """
    Available quantity cannot satisfy a reserve/consume/transfer request.

    Definitive: retrying without an external change (receipt, cancellation)
    will fail again.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, stock_id: str, requested: int, available: int):
        self.stock_id = stock_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock on {stock_id}: "
            f"requested {requested}, available {available}"
        )


class OverReservedError(StockError):
    """Consuming would leave reserved units without on-hand backing."""

    code: str = "OVER_RESERVED"

    def __init__(self, stock_id: str, requested: int, quantity: int, reserved: int):
        self.stock_id = stock_id
        self.requested = requested
        self.quantity = quantity
        self.reserved = reserved
        super().__init__(
            f"Consuming {requested} from {stock_id} would leave "
            f"quantity {quantity - requested} below reserved {reserved}"
        )


class InvariantViolationError(StockError):
    """
    An operation would break ``0 <= reserved <= quantity``.

    Indicates a programming or data-integrity defect.  Always surfaced,
    never silently corrected.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, stock_id: str, reason: str, quantity: int, reserved: int):
        self.stock_id = stock_id
        self.reason = reason
        self.quantity = quantity
        self.reserved = reserved
        super().__init__(
            f"Invariant violation on {stock_id}: {reason} "
            f"(quantity={quantity}, reserved={reserved})"
        )


class InvalidTransferError(StockError):
    """Transfer endpoints are not a valid pair."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid transfer: {reason}")


# Warehouse-related exceptions


class WarehouseError(InventoryKernelError):
    """Base exception for warehouse errors."""

    code: str = "WAREHOUSE_ERROR"


class WarehouseNotFoundError(WarehouseError):
    """Warehouse with given ID or code was not found."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_ref: str):
        self.warehouse_ref = warehouse_ref
        super().__init__(f"Warehouse not found: {warehouse_ref}")


class WarehouseInactiveError(WarehouseError):
    """Inbound stock operation against a deactivated warehouse."""

    code: str = "WAREHOUSE_INACTIVE"

    def __init__(self, warehouse_id: str, operation: str):
        self.warehouse_id = warehouse_id
        self.operation = operation
        super().__init__(
            f"Warehouse {warehouse_id} is inactive; {operation} not allowed"
        )


class DuplicateWarehouseCodeError(WarehouseError):
    """Warehouse code is already registered."""

    code: str = "DUPLICATE_WAREHOUSE_CODE"

    def __init__(self, warehouse_code: str):
        self.warehouse_code = warehouse_code
        super().__init__(f"Warehouse code already exists: {warehouse_code}")


class WarehouseValidationError(WarehouseError):
    """Warehouse field failed validation."""

    code: str = "WAREHOUSE_VALIDATION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid warehouse {field}: {reason}")


# Reservation-related exceptions


class ReservationError(InventoryKernelError):
    """Base exception for reservation errors."""

    code: str = "RESERVATION_ERROR"


class ReservationNotFoundError(ReservationError):
    """Reservation with given ID was not found."""

    code: str = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: str):
        self.reservation_id = reservation_id
        super().__init__(f"Reservation not found: {reservation_id}")


class ReservationNotActiveError(ReservationError):
    """
    Reservation is already in a terminal status.

    Benign for cancel/expiry races (those paths return a result instead of
    raising); an error for ``fulfill`` called on a finalized reservation.
    """

    code: str = "RESERVATION_NOT_ACTIVE"

    def __init__(self, reservation_id: str, status: str):
        self.reservation_id = reservation_id
        self.status = status
        super().__init__(
            f"Reservation {reservation_id} is not active (status={status})"
        )


class ReservationExpiredError(ReservationNotActiveError):
    """Fulfilment attempted after the reservation deadline; it was expired."""

    code: str = "RESERVATION_EXPIRED"

    def __init__(self, reservation_id: str, expires_at: str):
        self.expires_at = expires_at
        super().__init__(reservation_id, "expired")


class DuplicateReservationError(ReservationError):
    """An active reservation with a different quantity already exists."""

    code: str = "DUPLICATE_RESERVATION"

    def __init__(self, order_id: str, stock_id: str, existing_quantity: int, requested: int):
        self.order_id = order_id
        self.stock_id = stock_id
        self.existing_quantity = existing_quantity
        self.requested = requested
        super().__init__(
            f"Order {order_id} already holds {existing_quantity} on {stock_id}; "
            f"requested {requested}"
        )


class InvalidReservationTTLError(ReservationError):
    """Reservation TTL is non-positive or exceeds the configured maximum."""

    code: str = "INVALID_RESERVATION_TTL"

    def __init__(self, ttl_seconds: float, max_ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        super().__init__(
            f"Invalid reservation TTL {ttl_seconds}s "
            f"(must be > 0 and <= {max_ttl_seconds}s)"
        )


# Concurrency-related exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors.  Always retryable."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class LockTimeoutError(ConcurrencyError):
    """Row lock could not be acquired within the bounded wait."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, lock_key: str, timeout_seconds: float):
        self.lock_key = lock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock on {lock_key}"
        )


class DeadlockAvoidedError(ConcurrencyError):
    """Lock ordering violation detected before acquiring a further lock."""

    code: str = "DEADLOCK_AVOIDED"

    def __init__(self, held_key: str, requested_key: str):
        self.held_key = held_key
        self.requested_key = requested_key
        super().__init__(
            f"Refusing to lock {requested_key} while holding {held_key}: "
            "locks must be acquired in ascending key order"
        )


class OptimisticLockError(ConcurrencyError):
    """Optimistic version check failed at commit."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    StockMovement rows are append-only; terminal reservations are frozen;
    stock rows are never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
