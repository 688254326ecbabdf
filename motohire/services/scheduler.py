"""Runs payment reconciliation on a fixed interval."""

import asyncio
from typing import Optional

from motohire.config.settings import Settings
from motohire.logging import get_logger
from motohire.services.payment_reconciliation import PaymentReconciliationJob

logger = get_logger(__name__)


class SchedulerService:
    """Interval loop around the reconciliation job.

    `stop()` wakes the loop immediately instead of waiting out the
    current interval.
    """

    def __init__(self, reconciliation_job: PaymentReconciliationJob, interval_seconds: float = 60):
        self.reconciliation_job = reconciliation_job
        self.interval_seconds = interval_seconds
        self._stopped: Optional[asyncio.Event] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, reconciliation_job: PaymentReconciliationJob
    ) -> "SchedulerService":
        return cls(reconciliation_job, interval_seconds=settings.payment_reconcile_interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._stopped is not None and not self._stopped.is_set()

    async def start(self) -> None:
        """Reconcile, then wait one interval, until stopped."""
        self._stopped = asyncio.Event()
        logger.info("scheduler_started", interval_seconds=self.interval_seconds)

        while not self._stopped.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def stop(self) -> None:
        if self._stopped is not None:
            self._stopped.set()
        logger.info("scheduler_stopped")

    async def tick(self) -> dict[str, int]:
        """Run one reconciliation pass; a failing pass never ends the loop."""
        try:
            counts = await self.reconciliation_job.run()
        except Exception as e:
            logger.error("scheduler_error", error=str(e), exc_info=True)
            return {}

        if any(counts.values()):
            logger.info("scheduler_reconciled", **counts)
        return counts
