"""Unit tests for the reconciliation scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from motohire.services.scheduler import SchedulerService


def _job(**run_kwargs):
    job = MagicMock()
    job.run = AsyncMock(**run_kwargs)
    return job


@pytest.mark.asyncio
async def test_tick_returns_job_counts():
    counts = {"settled": 2, "cancelled": 1, "pending": 0, "failed": 0}
    scheduler = SchedulerService(_job(return_value=counts))

    assert await scheduler.tick() == counts


@pytest.mark.asyncio
async def test_tick_survives_job_failure():
    scheduler = SchedulerService(_job(side_effect=RuntimeError("db down")))

    assert await scheduler.tick() == {}


@pytest.mark.asyncio
async def test_stop_ends_loop_without_waiting_interval():
    job = _job(return_value={"settled": 0, "cancelled": 0, "pending": 0, "failed": 0})
    scheduler = SchedulerService(job, interval_seconds=3600)

    task = asyncio.create_task(scheduler.start())
    await asyncio.sleep(0.01)
    assert scheduler.is_running

    await scheduler.stop()
    await asyncio.wait_for(task, timeout=1)

    assert not scheduler.is_running
    job.run.assert_awaited_once()
