"""
Module: inventory_kernel.models.movement
Responsibility: ORM persistence for the append-only stock movement ledger.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py).
    - (stock_id, sequence) is unique; sequence equals the stock version the
      movement produced, so movements of one row are totally ordered by
      commit order.
    - (stock_id, movement_type, reference_type, reference_id) is unique, which
      makes replays of a referenced operation detectable (NULL references
      never collide).

Audit relevance:
    StockMovement IS the audit trail and the basis for replaying a stock
    row's quantity from genesis (ReconciliationService).
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Enum as SAEnum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime, UUIDString
from inventory_kernel.domain.dtos import MovementRecord
from inventory_kernel.domain.values import MovementType


class StockMovement(Base):
    """
    One stock-affecting event.

    Contract:
        ``quantity`` is signed.  For in/out/adjust/transfer it is the change of
        the row's on-hand quantity; for reserve/release it is the change of
        the row's reserved units.

    Non-goals:
        - ``payload`` is an opaque caller document; the ledger never reads it.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("stock_id", "sequence", name="uq_movement_stock_sequence"),
        UniqueConstraint(
            "stock_id",
            "type",
            "reference_type",
            "reference_id",
            name="uq_movement_reference",
        ),
        Index("idx_movement_reference", "reference_type", "reference_id"),
        Index("idx_movement_created", "created_at"),
    )

    stock_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stocks.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(
        nullable=False,
    )

    movement_type: Mapped[MovementType] = mapped_column(
        "type",
        SAEnum(
            MovementType,
            native_enum=False,
            length=20,
            values_callable=lambda enum: [m.value for m in enum],
        ),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(
        nullable=False,
    )

    reference_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    reference_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    reason: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    payload: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
    )

    # Set from the injected clock, never by the database
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.movement_type.value} {self.quantity:+d} "
            f"stock={self.stock_id} seq={self.sequence}>"
        )

    def to_record(self) -> MovementRecord:
        return MovementRecord(
            id=self.id,
            stock_id=self.stock_id,
            sequence=self.sequence,
            movement_type=self.movement_type,
            quantity=self.quantity,
            reference_id=self.reference_id,
            reference_type=self.reference_type,
            reason=self.reason,
            payload=self.payload,
            created_at=self.created_at,
        )
