"""
ReconciliationService -- audit of stored stock rows against the ledger.

Responsibility:
    Replays each row's movements from genesis and compares the result with
    the stored ``quantity``; compares stored ``reserved`` with the sum of
    active reservations.

Architecture position:
    Kernel > Services.  Read-only; uses MovementRecorder and
    ReservationSelector inside a single read session per row.

Failure modes:
    - StockNotFoundError for an unknown stock id.

Audit relevance:
    Discrepancies are logged at ERROR and reported.  Nothing is corrected
    automatically; a correction is an explicit ``adjust`` with a reason.
"""

from uuid import UUID

from inventory_kernel.db.engine import SessionFactory
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import ReconciliationReport
from inventory_kernel.exceptions import StockNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.stock import Stock
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.movement_recorder import MovementRecorder

logger = get_logger("services.reconciliation")


class ReconciliationService:
    """
    Contract:
        ``reconcile()`` returns a ReconciliationReport; it never writes.
    """

    def __init__(self, session_factory: SessionFactory, clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def replay_quantity(self, stock_id: UUID) -> int:
        """On-hand quantity implied by the row's movements."""
        with self._session_factory() as session:
            quantity, _ = MovementRecorder(session, self._clock).replay_quantity(stock_id)
        return quantity

    def reconcile(self, stock_id: UUID) -> ReconciliationReport:
        with self._session_factory() as session:
            stock = session.get(Stock, stock_id)
            if stock is None:
                raise StockNotFoundError(stock_id=str(stock_id))
            replayed, count = MovementRecorder(session, self._clock).replay_quantity(stock_id)
            report = ReconciliationReport(
                stock_id=stock_id,
                stored_quantity=stock.quantity,
                replayed_quantity=replayed,
                stored_reserved=stock.reserved,
                active_reserved=ReservationSelector(session).active_reserved(stock_id),
                movement_count=count,
            )

        if report.is_consistent:
            logger.debug("stock_reconciled", extra={"stock_id": str(stock_id)})
        else:
            logger.error(
                "stock_reconciliation_mismatch",
                extra={
                    "stock_id": str(stock_id),
                    "stored_quantity": report.stored_quantity,
                    "replayed_quantity": report.replayed_quantity,
                    "stored_reserved": report.stored_reserved,
                    "active_reserved": report.active_reserved,
                },
            )
        return report

    def reconcile_all(self) -> list[ReconciliationReport]:
        with self._session_factory() as session:
            stock_ids = StockSelector(session).list_ids()
        reports = [self.reconcile(stock_id) for stock_id in stock_ids]
        logger.info(
            "reconciliation_completed",
            extra={
                "stocks": len(reports),
                "inconsistent": sum(1 for r in reports if not r.is_consistent),
            },
        )
        return reports
