"""Payment reconciliation job.

Background job that resolves reservations still awaiting payment.
Asks the provider for the outcome of each pending checkout request and
cancels reservations whose payment prompt was never sent. A prompt the
provider still reports as pending past a hard cutoff is cancelled too,
so the bike is released and the row leaves the stale queue.
"""

from datetime import datetime, timedelta
from typing import Optional

from motohire.logging import get_logger
from motohire.logging.audit import AuditLogger
from motohire.models.errors import SettlementEscalation
from motohire.models.reservation import Reservation, ReservationStatus, to_naive_utc
from motohire.services.settlement_flow import SettlementOrchestrator
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository

logger = get_logger(__name__)

CANCEL_REASON_ABANDONED = "payment_abandoned"
CANCEL_REASON_UNRESOLVED = "payment_unresolved"


class PaymentReconciliationJob:
    """Background job to settle or release stale pending reservations."""

    def __init__(
        self,
        reservation_repo: PostgresReservationRepository,
        orchestrator: SettlementOrchestrator,
        reconcile_after_seconds: int = 120,
        abandon_after_seconds: int = 900,
        unresolved_after_seconds: Optional[int] = None,
    ):
        """
        Initialize reconciliation job.

        Args:
            reservation_repo: Reservation repository for finding stale rows
            orchestrator: Settlement orchestrator that applies outcomes
            reconcile_after_seconds: Age before a pending payment is queried
            abandon_after_seconds: Age before a reservation with no prompt is cancelled
            unresolved_after_seconds: Age before a prompt still pending is cancelled
                (defaults to four times abandon_after_seconds)
        """
        self.reservation_repo = reservation_repo
        self.orchestrator = orchestrator
        self.reconcile_after_seconds = reconcile_after_seconds
        self.abandon_after_seconds = abandon_after_seconds
        if unresolved_after_seconds is None:
            unresolved_after_seconds = abandon_after_seconds * 4
        self.unresolved_after_seconds = unresolved_after_seconds

    async def run(self, now: Optional[datetime] = None) -> dict[str, int]:
        """
        Execute reconciliation job.

        Returns:
            Dictionary with counts: {"settled", "cancelled", "pending", "failed"}
        """
        now = to_naive_utc(now) or datetime.utcnow()
        counts = {"settled": 0, "cancelled": 0, "pending": 0, "failed": 0}

        logger.info("payment_reconciliation_started")

        try:
            stale = await self.reservation_repo.get_stale_pending(
                now - timedelta(seconds=self.reconcile_after_seconds)
            )
        except Exception as e:
            logger.error("payment_reconciliation_error", error=str(e), exc_info=True)
            return counts

        abandon_before = now - timedelta(seconds=self.abandon_after_seconds)
        unresolved_before = now - timedelta(seconds=self.unresolved_after_seconds)

        for reservation in stale:
            try:
                if not reservation.payment_reference:
                    if reservation.created_at < abandon_before:
                        await self.reservation_repo.update_status(
                            reservation.id,
                            ReservationStatus.CANCELLED,
                            reason=CANCEL_REASON_ABANDONED,
                        )
                        counts["cancelled"] += 1
                        logger.info(
                            "reservation_abandoned",
                            reservation_id=str(reservation.id),
                            created_at=reservation.created_at.isoformat(),
                        )
                    else:
                        counts["pending"] += 1
                    continue

                result = await self.orchestrator.reconcile_payment(reservation.id)
                status = result.reservation.status if result.reservation else None

                if status == ReservationStatus.CONFIRMED:
                    counts["settled"] += 1
                elif status == ReservationStatus.CANCELLED:
                    counts["cancelled"] += 1
                elif reservation.created_at < unresolved_before:
                    await self._cancel_unresolved(reservation)
                    counts["cancelled"] += 1
                else:
                    counts["pending"] += 1

            except SettlementEscalation as e:
                counts["failed"] += 1
                logger.error(
                    "payment_reconciliation_escalated",
                    reservation_id=str(reservation.id),
                    error=str(e),
                )
            except Exception as e:
                counts["failed"] += 1
                logger.error(
                    "payment_reconciliation_failed",
                    reservation_id=str(reservation.id),
                    error=str(e),
                    exc_info=True,
                )

        logger.info("payment_reconciliation_completed", **counts)
        return counts

    async def _cancel_unresolved(self, reservation: Reservation) -> None:
        """Release a bike whose payment outcome never arrived.

        The prompt may still have been paid, so the cancellation is audited
        as an escalation for manual follow-up.
        """
        await self.reservation_repo.update_status(
            reservation.id,
            ReservationStatus.CANCELLED,
            reason=CANCEL_REASON_UNRESOLVED,
        )
        logger.warning(
            "reservation_payment_unresolved",
            reservation_id=str(reservation.id),
            payment_reference=reservation.payment_reference,
            created_at=reservation.created_at.isoformat(),
        )
        AuditLogger.log_payment_escalated(
            reservation_id=reservation.id,
            error=f"Payment still pending after {self.unresolved_after_seconds}s; reservation cancelled",
        )
