"""
MovementRecorder -- append-only writer and reader of the movement ledger.

Responsibility:
    Appends StockMovement rows inside the caller's transaction and reads them
    back in per-row commit order.  Also folds a row's movements from genesis
    into its on-hand quantity for reconciliation.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by LedgerTransaction for every mutation; read by
    ReconciliationService and audit tooling.

Invariants enforced:
    - Append-only: movements are only ever added.  Updates and deletes are
      blocked by db/immutability.py.
    - Insertion-ordered retrieval per stock row: ordered by ``sequence``,
      which equals the stock version each movement produced.

Failure modes:
    - IntegrityError if a sequence or reference collides (a concurrent writer
      bypassed the row lock); the whole transaction rolls back.
"""

from typing import Sequence as Seq
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock
from inventory_kernel.domain.dtos import MovementRecord
from inventory_kernel.domain.values import MovementType
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.movement import StockMovement
from inventory_kernel.services.base import BaseService

logger = get_logger("services.movement_recorder")

_QUANTITY_TYPES = tuple(m for m in MovementType if m.affects_quantity)


class MovementRecorder(BaseService):
    """
    Contract:
        ``record()`` adds and flushes one movement and returns its id.
        Read methods return frozen MovementRecord DTOs.

    Non-goals:
        - Does NOT validate stock arithmetic; StockLevel does that before a
          movement is built.
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session, clock: Clock):
        super().__init__(session)
        self._clock = clock

    def record(self, movement: StockMovement) -> UUID:
        """Append one movement to the ledger.

        Postconditions:
            - The movement is flushed (visible to later queries in this
              transaction) and has ``created_at`` from the injected clock
              unless the caller set it.
        """
        if movement.created_at is None:
            movement.created_at = self._clock.now()
        self.session.add(movement)
        self.session.flush()
        logger.debug(
            "movement_recorded",
            extra={
                "movement_id": str(movement.id),
                "stock_id": str(movement.stock_id),
                "sequence": movement.sequence,
                "movement_type": movement.movement_type.value,
                "quantity": movement.quantity,
            },
        )
        return movement.id

    def find_by_reference(
        self,
        stock_id: UUID,
        movement_type: MovementType,
        reference_type: str | None,
        reference_id: UUID | None,
    ) -> StockMovement | None:
        """Movement already recorded for this (row, operation, reference), if any."""
        if reference_id is None:
            return None
        return self.session.execute(
            select(StockMovement).where(
                StockMovement.stock_id == stock_id,
                StockMovement.movement_type == movement_type,
                StockMovement.reference_type == reference_type,
                StockMovement.reference_id == reference_id,
            )
        ).scalar_one_or_none()

    def list_by_stock(
        self,
        stock_id: UUID,
        since: int | None = None,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        """Movements of one row in commit order.

        Args:
            stock_id: Stock row.
            since: Only movements with ``sequence`` greater than this.
            limit: Maximum number of movements returned.
        """
        query = select(StockMovement).where(StockMovement.stock_id == stock_id)
        if since is not None:
            query = query.where(StockMovement.sequence > since)
        query = query.order_by(StockMovement.sequence)
        if limit is not None:
            query = query.limit(limit)
        return [m.to_record() for m in self.session.execute(query).scalars()]

    def list_by_reference(
        self,
        reference_type: str,
        reference_id: UUID,
    ) -> list[MovementRecord]:
        """All movements sharing a reference (e.g. both legs of a transfer)."""
        rows = self.session.execute(
            select(StockMovement)
            .where(
                StockMovement.reference_type == reference_type,
                StockMovement.reference_id == reference_id,
            )
            .order_by(StockMovement.created_at, StockMovement.sequence)
        ).scalars()
        return [m.to_record() for m in rows]

    def replay_quantity(self, stock_id: UUID) -> tuple[int, int]:
        """Fold on-hand quantity from genesis.

        Returns:
            (replayed_quantity, movement_count)
        """
        total, count = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        case(
                            (StockMovement.movement_type.in_(_QUANTITY_TYPES), StockMovement.quantity),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.count(StockMovement.id),
            ).where(StockMovement.stock_id == stock_id)
        ).one()
        return int(total), int(count)

    @staticmethod
    def fold(movements: Seq[MovementRecord]) -> int:
        """Pure fold of on-hand quantity over already-loaded movements."""
        return sum(m.quantity for m in movements if m.movement_type.affects_quantity)
