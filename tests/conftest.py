"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio

from motohire.config.settings import Settings
from motohire.models.reservation import ReservationAddOn
from motohire.models.settlement import SettlementIntent
from motohire.services.payment_config import MpesaConfig
from motohire.storage.database import Database

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def settings():
    """Settings pointing at an in-memory database."""
    return Settings(database_url=SQLITE_URL, confirm_retry_backoff_seconds=0)


@pytest_asyncio.fixture
async def db(settings):
    """Connected in-memory database with all tables."""
    database = Database(settings)
    await database.connect()
    await database.create_tables()
    try:
        yield database
    finally:
        await database.disconnect()


@pytest_asyncio.fixture
async def session(db):
    """Database session for repository tests."""
    async with db.session() as s:
        yield s


@pytest.fixture
def mpesa_config():
    """Fully configured sandbox credentials."""
    return MpesaConfig(
        consumer_key="ck_test",
        consumer_secret="cs_test",
        passkey="pk_test",
        shortcode="174379",
        callback_url="https://example.com/mpesa/callback",
        simulation_delay_seconds=0,
    )


@pytest.fixture
def mock_lock_helper():
    """Redis lock helper that always grants the lock."""
    helper = MagicMock()

    @asynccontextmanager
    async def acquire(asset_id):
        yield True

    helper.acquire_asset_lock = MagicMock(side_effect=acquire)
    return helper


@pytest.fixture
def busy_lock_helper():
    """Redis lock helper whose lock is always held elsewhere."""
    helper = MagicMock()

    @asynccontextmanager
    async def acquire(asset_id):
        yield False

    helper.acquire_asset_lock = MagicMock(side_effect=acquire)
    return helper


@pytest.fixture
def mock_gateway(mpesa_config):
    """Payment gateway double."""
    gateway = MagicMock()
    gateway.config = mpesa_config
    gateway.request_push = AsyncMock()
    gateway.query_status = AsyncMock()
    return gateway


@pytest.fixture
def helmet():
    return ReservationAddOn(gear_id=uuid4(), name="Helmet", price_per_day=200)


@pytest.fixture
def rental_start():
    return datetime(2026, 11, 2, 9, 0)


@pytest.fixture
def sample_intent(rental_start, helmet):
    """Three-day rental of a 1,500/day bike with a helmet."""
    return SettlementIntent(
        owner_id=uuid4(),
        asset_id=uuid4(),
        asset_name="Honda CB500X",
        unit_rate=1500,
        start_date=rental_start,
        end_date=rental_start + timedelta(days=3),
        pickup_location="Westlands, Nairobi",
        payer_phone="0712 345 678",
        add_ons=[helmet],
    )
