"""
Module: inventory_kernel.models.reservation
Responsibility: ORM persistence for timed stock reservations.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ value types and exceptions only.

Invariants enforced:
    - quantity > 0 (CHECK constraint).
    - One-way state machine: ACTIVE -> FULFILLED | EXPIRED | CANCELLED.
      ``finalize()`` is the only sanctioned transition and refuses to leave
      a terminal status; db/immutability.py blocks any change to a row whose
      persisted status is terminal.
    - The sum of active reservation quantities for a stock row equals that
      row's ``reserved`` (maintained by ReservationManager under the row lock).

Failure modes:
    - ReservationNotActiveError from ``finalize()`` on a terminal reservation.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from inventory_kernel.domain.dtos import ReservationSnapshot
from inventory_kernel.domain.values import ReservationStatus
from inventory_kernel.exceptions import ReservationNotActiveError


class StockReservation(TrackedBase):
    """
    A timed hold on units of one stock row for one order.

    Guarantees:
        - Enters life ACTIVE; reaches a terminal status exactly once.
        - No quantity change after reaching a terminal status.
    """

    __tablename__ = "stock_reservations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("idx_reservation_stock_order", "stock_id", "order_id"),
        Index("idx_reservation_order", "order_id"),
        Index("idx_reservation_due", "status", "expires_at"),
    )

    stock_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stocks.id"),
        nullable=False,
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    status: Mapped[ReservationStatus] = mapped_column(
        SAEnum(
            ReservationStatus,
            native_enum=False,
            length=20,
            values_callable=lambda enum: [m.value for m in enum],
        ),
        default=ReservationStatus.ACTIVE,
        nullable=False,
    )

    finalized_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<StockReservation {self.id}: {self.quantity} {self.status.value}>"

    @property
    def is_active(self) -> bool:
        return self.status is ReservationStatus.ACTIVE

    def is_due(self, now: datetime) -> bool:
        return self.expires_at <= now

    def finalize(self, status: ReservationStatus, at: datetime) -> None:
        """Move from ACTIVE to a terminal status.

        Raises:
            ReservationNotActiveError: already terminal.
            ValueError: ``status`` is not terminal.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal reservation status")
        if not self.is_active:
            raise ReservationNotActiveError(str(self.id), self.status.value)
        self.status = status
        self.finalized_at = at

    def to_snapshot(self) -> ReservationSnapshot:
        return ReservationSnapshot(
            id=self.id,
            stock_id=self.stock_id,
            order_id=self.order_id,
            quantity=self.quantity,
            expires_at=self.expires_at,
            status=self.status,
            finalized_at=self.finalized_at,
        )
