"""Integration tests for engine wiring."""

import pytest

from motohire.runtime import build_orchestrator, build_reconciliation_job
from motohire.services.mpesa_gateway import MpesaGateway
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository


@pytest.mark.asyncio
async def test_orchestrator_built_from_settings(settings, session, mock_lock_helper):
    orchestrator = build_orchestrator(settings, session, lock_helper=mock_lock_helper)

    assert isinstance(orchestrator.reservation_repo, PostgresReservationRepository)
    assert isinstance(orchestrator.gateway, MpesaGateway)
    assert orchestrator.confirm_retry_backoff_seconds == 0
    assert orchestrator.lock_helper is mock_lock_helper
    assert orchestrator.max_finished_flows == settings.settlement_max_finished_flows


@pytest.mark.asyncio
async def test_reconciliation_job_shares_repository(settings, session, mock_gateway):
    orchestrator = build_orchestrator(settings, session, gateway=mock_gateway)

    job = build_reconciliation_job(settings, orchestrator)

    assert job.reservation_repo is orchestrator.reservation_repo
    assert job.reconcile_after_seconds == settings.payment_reconcile_after_seconds
    assert job.unresolved_after_seconds == settings.payment_unresolved_after_seconds
    assert await job.run() == {"settled": 0, "cancelled": 0, "pending": 0, "failed": 0}


@pytest.mark.asyncio
async def test_unconfigured_gateway_rejects_without_network(settings, session, sample_intent, mock_lock_helper):
    orchestrator = build_orchestrator(settings, session, lock_helper=mock_lock_helper)

    result = await orchestrator.start_settlement(sample_intent)

    assert not result.success
    assert result.reservation.status.value == "cancelled"
