"""Integration tests for the payment reconciliation job."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from motohire.models.payment import PaymentOutcome, PaymentStatusQuery
from motohire.models.reservation import ReservationInput, ReservationStatus
from motohire.services.loyalty_award import LoyaltyAwardService
from motohire.services.payment_reconciliation import PaymentReconciliationJob
from motohire.services.scheduler import SchedulerService
from motohire.services.settlement_flow import SettlementOrchestrator
from motohire.storage.postgres_loyalty_repo import PostgresLoyaltyRepository
from motohire.storage.postgres_promo_code_repo import PostgresPromoCodeRepository
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository

START = datetime(2026, 11, 2, 9, 0)


def _input() -> ReservationInput:
    return ReservationInput(
        owner_id=uuid4(),
        asset_id=uuid4(),
        start_date=START,
        end_date=START + timedelta(days=1),
        pickup_location="Karen",
        base_subtotal=1200,
        total_price=1200,
    )


@pytest.fixture
def job(session, mock_gateway):
    reservation_repo = PostgresReservationRepository(session)
    orchestrator = SettlementOrchestrator(
        reservation_repo=reservation_repo,
        promo_repo=PostgresPromoCodeRepository(session),
        gateway=mock_gateway,
        loyalty_service=LoyaltyAwardService(PostgresLoyaltyRepository(session)),
        confirm_retry_backoff_seconds=0,
    )
    return PaymentReconciliationJob(
        reservation_repo,
        orchestrator,
        reconcile_after_seconds=0,
        abandon_after_seconds=0,
        unresolved_after_seconds=3600,
    )


async def _pending(session, checkout_request_id=None):
    repo = PostgresReservationRepository(session)
    reservation = await repo.create(_input())
    if checkout_request_id:
        await repo.attach_payment_reference(reservation.id, checkout_request_id)
    return reservation


@pytest.mark.asyncio
async def test_settled_payments_confirmed(session, job, mock_gateway):
    reservation = await _pending(session, "ws_CO_paid")
    mock_gateway.query_status.return_value = PaymentStatusQuery(
        outcome=PaymentOutcome.SETTLED, result_code=0
    )

    counts = await job.run(now=datetime.utcnow() + timedelta(seconds=1))

    assert counts == {"settled": 1, "cancelled": 0, "pending": 0, "failed": 0}
    confirmed = await PostgresReservationRepository(session).get_by_id(reservation.id)
    assert confirmed.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_unanswered_prompt_stays_pending(session, job, mock_gateway):
    reservation = await _pending(session, "ws_CO_waiting")
    mock_gateway.query_status.return_value = PaymentStatusQuery(outcome=PaymentOutcome.PENDING)

    counts = await job.run(now=datetime.utcnow() + timedelta(seconds=1))

    assert counts["pending"] == 1
    still = await PostgresReservationRepository(session).get_by_id(reservation.id)
    assert still.status == ReservationStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_prompt_pending_past_cutoff_cancelled(session, job, mock_gateway):
    reservation = await _pending(session, "ws_CO_silent")
    mock_gateway.query_status.return_value = PaymentStatusQuery(outcome=PaymentOutcome.PENDING)
    later = datetime.utcnow() + timedelta(hours=2)

    counts = await job.run(now=later)

    assert counts == {"settled": 0, "cancelled": 1, "pending": 0, "failed": 0}
    repo = PostgresReservationRepository(session)
    released = await repo.get_by_id(reservation.id)
    assert released.status == ReservationStatus.CANCELLED
    assert released.cancellation_reason == "payment_unresolved"
    assert await repo.get_stale_pending(later) == []


@pytest.mark.asyncio
async def test_unresolved_cutoff_defaults_from_abandon_window(session):
    job = PaymentReconciliationJob(
        PostgresReservationRepository(session), AsyncMock(), abandon_after_seconds=900
    )

    assert job.unresolved_after_seconds == 3600


@pytest.mark.asyncio
async def test_declined_payment_cancelled(session, job, mock_gateway):
    await _pending(session, "ws_CO_declined")
    mock_gateway.query_status.return_value = PaymentStatusQuery(
        outcome=PaymentOutcome.REJECTED, result_code=1, result_desc="The balance is insufficient"
    )

    counts = await job.run(now=datetime.utcnow() + timedelta(seconds=1))

    assert counts["cancelled"] == 1


@pytest.mark.asyncio
async def test_reservation_without_prompt_abandoned(session, job, mock_gateway):
    reservation = await _pending(session)

    counts = await job.run(now=datetime.utcnow() + timedelta(seconds=1))

    assert counts["cancelled"] == 1
    mock_gateway.query_status.assert_not_awaited()
    abandoned = await PostgresReservationRepository(session).get_by_id(reservation.id)
    assert abandoned.cancellation_reason == "payment_abandoned"


@pytest.mark.asyncio
async def test_query_failure_counted(session, job, mock_gateway):
    await _pending(session, "ws_CO_boom")
    mock_gateway.query_status.side_effect = RuntimeError("unexpected")

    counts = await job.run(now=datetime.utcnow() + timedelta(seconds=1))

    assert counts["failed"] == 1


@pytest.mark.asyncio
async def test_scheduler_tick_runs_job(session, job, mock_gateway):
    await _pending(session, "ws_CO_paid")
    mock_gateway.query_status.return_value = PaymentStatusQuery(outcome=PaymentOutcome.SETTLED)
    scheduler = SchedulerService(job, interval_seconds=60)

    counts = await scheduler.tick()

    assert set(counts) == {"settled", "cancelled", "pending", "failed"}
    assert counts["failed"] == 0
