"""Integration tests for the reservation repository."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from motohire.models.errors import InvalidStatusTransition, ReservationNotFound
from motohire.models.reservation import ReservationAddOn, ReservationInput, ReservationStatus
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository

START = datetime(2026, 11, 2, 9, 0)


def _input(asset_id=None, start=START, days=2, **overrides) -> ReservationInput:
    fields = dict(
        owner_id=uuid4(),
        asset_id=asset_id or uuid4(),
        asset_name="Yamaha XTZ 125",
        start_date=start,
        end_date=start + timedelta(days=days),
        pickup_location="CBD, Nairobi",
        add_ons=[ReservationAddOn(gear_id=uuid4(), name="Helmet", price_per_day=200)],
        base_subtotal=2000,
        addon_subtotal=400,
        total_price=2400,
        payer_phone="254712345678",
    )
    fields.update(overrides)
    return ReservationInput(**fields)


@pytest.mark.asyncio
async def test_create_and_fetch(session):
    repo = PostgresReservationRepository(session)

    created = await repo.create(_input())
    fetched = await repo.get_by_id(created.id)

    assert fetched.status == ReservationStatus.PENDING_PAYMENT
    assert fetched.total_price == 2400
    assert [a.name for a in fetched.add_ons] == ["Helmet"]


@pytest.mark.asyncio
async def test_confirm_records_receipt(session):
    repo = PostgresReservationRepository(session)
    created = await repo.create(_input())

    confirmed = await repo.update_status(created.id, ReservationStatus.CONFIRMED, receipt="NLJ7RT61SV")

    assert confirmed.status == ReservationStatus.CONFIRMED
    assert confirmed.payment_receipt == "NLJ7RT61SV"
    assert confirmed.confirmed_at is not None


@pytest.mark.asyncio
async def test_cancel_records_reason(session):
    repo = PostgresReservationRepository(session)
    created = await repo.create(_input())

    cancelled = await repo.update_status(
        created.id, ReservationStatus.CANCELLED, reason="payment_failed"
    )

    assert cancelled.cancellation_reason == "payment_failed"
    assert cancelled.cancelled_at is not None


@pytest.mark.asyncio
async def test_terminal_status_cannot_change(session):
    repo = PostgresReservationRepository(session)
    created = await repo.create(_input())
    await repo.update_status(created.id, ReservationStatus.CONFIRMED)

    with pytest.raises(InvalidStatusTransition):
        await repo.update_status(created.id, ReservationStatus.CANCELLED)


@pytest.mark.asyncio
async def test_update_missing_reservation(session):
    repo = PostgresReservationRepository(session)

    with pytest.raises(ReservationNotFound):
        await repo.update_status(uuid4(), ReservationStatus.CONFIRMED)


@pytest.mark.asyncio
async def test_payment_reference_lookup(session):
    repo = PostgresReservationRepository(session)
    created = await repo.create(_input())

    await repo.attach_payment_reference(created.id, "ws_CO_191220191020363925")

    found = await repo.get_by_payment_reference("ws_CO_191220191020363925")
    assert found.id == created.id
    assert await repo.get_by_payment_reference("ws_CO_other") is None


@pytest.mark.asyncio
async def test_overlap_detection(session):
    repo = PostgresReservationRepository(session)
    asset_id = uuid4()
    existing = await repo.create(_input(asset_id=asset_id, start=START, days=3))

    overlapping = await repo.find_overlapping(asset_id, START + timedelta(days=2), START + timedelta(days=5))
    back_to_back = await repo.find_overlapping(asset_id, START + timedelta(days=3), START + timedelta(days=4))
    other_bike = await repo.find_overlapping(uuid4(), START, START + timedelta(days=3))

    assert [r.id for r in overlapping] == [existing.id]
    assert back_to_back == []
    assert other_bike == []


@pytest.mark.asyncio
async def test_same_day_rental_holds_the_bike(session):
    repo = PostgresReservationRepository(session)
    asset_id = uuid4()
    await repo.create(_input(asset_id=asset_id, start=START, days=0))

    overlapping = await repo.find_overlapping(asset_id, START + timedelta(hours=3), START + timedelta(hours=3))

    assert len(overlapping) == 1


@pytest.mark.asyncio
async def test_cancelled_reservation_releases_dates(session):
    repo = PostgresReservationRepository(session)
    asset_id = uuid4()
    existing = await repo.create(_input(asset_id=asset_id))
    await repo.update_status(existing.id, ReservationStatus.CANCELLED, reason="user_cancelled")

    assert await repo.find_overlapping(asset_id, START, START + timedelta(days=2)) == []


@pytest.mark.asyncio
async def test_owner_listing_newest_first(session):
    repo = PostgresReservationRepository(session)
    owner_id = uuid4()
    first = await repo.create(_input(owner_id=owner_id))
    second = await repo.create(_input(owner_id=owner_id))

    listed = await repo.get_by_owner(owner_id)

    assert {r.id for r in listed} == {first.id, second.id}
    assert listed[0].created_at >= listed[1].created_at


@pytest.mark.asyncio
async def test_stale_pending(session):
    repo = PostgresReservationRepository(session)
    pending = await repo.create(_input())
    confirmed = await repo.create(_input())
    await repo.update_status(confirmed.id, ReservationStatus.CONFIRMED)

    stale = await repo.get_stale_pending(datetime.utcnow() + timedelta(seconds=1))

    assert [r.id for r in stale] == [pending.id]
