"""Engine wiring and the reconciliation worker entry point."""

import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from motohire.config import Settings, load_settings
from motohire.logging import get_logger, setup_logging
from motohire.services.loyalty_award import LoyaltyAwardService
from motohire.services.mpesa_gateway import MpesaGateway
from motohire.services.payment_config import MpesaConfig
from motohire.services.payment_reconciliation import PaymentReconciliationJob
from motohire.services.scheduler import SchedulerService
from motohire.services.settlement_flow import SettlementOrchestrator
from motohire.storage.database import Database
from motohire.storage.postgres_loyalty_repo import PostgresLoyaltyRepository
from motohire.storage.postgres_promo_code_repo import PostgresPromoCodeRepository
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository
from motohire.storage.redis_locks import RedisLockHelper


def build_orchestrator(
    settings: Settings,
    session: AsyncSession,
    lock_helper: Optional[RedisLockHelper] = None,
    gateway: Optional[MpesaGateway] = None,
) -> SettlementOrchestrator:
    """Orchestrator with repositories bound to one session."""
    return SettlementOrchestrator.from_settings(
        settings,
        reservation_repo=PostgresReservationRepository(session),
        promo_repo=PostgresPromoCodeRepository(session),
        gateway=gateway or MpesaGateway(MpesaConfig.from_settings(settings)),
        loyalty_service=LoyaltyAwardService(PostgresLoyaltyRepository(session)),
        lock_helper=lock_helper,
    )


def build_reconciliation_job(
    settings: Settings, orchestrator: SettlementOrchestrator
) -> PaymentReconciliationJob:
    return PaymentReconciliationJob(
        orchestrator.reservation_repo,
        orchestrator,
        reconcile_after_seconds=settings.payment_reconcile_after_seconds,
        abandon_after_seconds=settings.payment_abandon_after_seconds,
        unresolved_after_seconds=settings.payment_unresolved_after_seconds,
    )


async def run_reconciliation_worker(settings: Settings) -> None:
    """Reconcile pending payments until cancelled."""
    logger = get_logger(__name__)

    db = Database(settings)
    await db.connect()

    config = MpesaConfig.from_settings(settings)
    if config.simulation_enabled:
        logger.warning("mpesa_simulation_enabled", environment=settings.environment)
    if not config.is_configured:
        logger.warning("mpesa_not_configured", environment=config.environment)

    scheduler: Optional[SchedulerService] = None
    try:
        async with db.session() as session:
            orchestrator = build_orchestrator(settings, session, gateway=MpesaGateway(config))
            scheduler = SchedulerService.from_settings(
                settings, build_reconciliation_job(settings, orchestrator)
            )
            logger.info("reconciliation_worker_started")
            await scheduler.start()
    except asyncio.CancelledError:
        logger.info("reconciliation_worker_cancelled")
        raise
    finally:
        if scheduler is not None:
            await scheduler.stop()
        await db.disconnect()


def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, app_name=settings.app_name, environment=settings.environment)

    try:
        asyncio.run(run_reconciliation_worker(settings))
    except KeyboardInterrupt:
        get_logger(__name__).info("reconciliation_worker_stopped")


if __name__ == "__main__":
    main()
