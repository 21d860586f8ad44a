"""
Module: inventory_kernel.selectors.reservation_selector
Responsibility: Read-only access to reservations, including the due-for-expiry
    scan used by the sweeper.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - ``find_due`` pages by the keyset (expires_at, id), so a page boundary
      never skips or repeats a row even when expiry timestamps collide.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from inventory_kernel.domain.dtos import ReservationSnapshot
from inventory_kernel.domain.values import ReservationStatus
from inventory_kernel.models.reservation import StockReservation
from inventory_kernel.selectors.base import BaseSelector


class ReservationSelector(BaseSelector[StockReservation]):
    """Queries over stock reservations."""

    def get(self, reservation_id: UUID) -> ReservationSnapshot | None:
        reservation = self.session.get(StockReservation, reservation_id)
        return reservation.to_snapshot() if reservation is not None else None

    def list_for_order(self, order_id: UUID) -> list[ReservationSnapshot]:
        rows = self.session.execute(
            select(StockReservation)
            .where(StockReservation.order_id == order_id)
            .order_by(StockReservation.expires_at, StockReservation.id)
        ).scalars()
        return [r.to_snapshot() for r in rows]

    def find_active(self, stock_id: UUID, order_id: UUID) -> StockReservation | None:
        """The active reservation of ``order_id`` on one row, if any.

        Returns the ORM instance because callers finalize it in the same
        transaction.
        """
        return self.session.execute(
            select(StockReservation).where(
                StockReservation.stock_id == stock_id,
                StockReservation.order_id == order_id,
                StockReservation.status == ReservationStatus.ACTIVE,
            )
        ).scalars().first()

    def active_reserved(self, stock_id: UUID) -> int:
        """Sum of active reservation quantities on one row."""
        total = self.session.execute(
            select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(
                StockReservation.stock_id == stock_id,
                StockReservation.status == ReservationStatus.ACTIVE,
            )
        ).scalar_one()
        return int(total)

    def find_due(
        self,
        now: datetime,
        limit: int,
        after: tuple[datetime, UUID] | None = None,
    ) -> list[ReservationSnapshot]:
        """
        Active reservations with ``expires_at <= now``, oldest first.

        Args:
            now: Cut-off instant.
            limit: Page size.
            after: Keyset cursor -- the (expires_at, id) of the last row of
                the previous page.
        """
        query = select(StockReservation).where(
            StockReservation.status == ReservationStatus.ACTIVE,
            StockReservation.expires_at <= now,
        )
        if after is not None:
            after_expires, after_id = after
            query = query.where(
                or_(
                    StockReservation.expires_at > after_expires,
                    and_(
                        StockReservation.expires_at == after_expires,
                        StockReservation.id > after_id,
                    ),
                )
            )
        query = query.order_by(StockReservation.expires_at, StockReservation.id).limit(limit)
        return [r.to_snapshot() for r in self.session.execute(query).scalars()]
