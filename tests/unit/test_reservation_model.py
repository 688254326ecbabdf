"""Unit tests for Reservation model and status transitions."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from motohire.models.reservation import (
    ReservationAddOn,
    ReservationInput,
    ReservationStatus,
    can_transition,
    to_naive_utc,
)
from motohire.models.settlement import SettlementIntent

START = datetime(2026, 11, 2, 9, 0)


def _input(**overrides) -> ReservationInput:
    fields = dict(
        owner_id=uuid4(),
        asset_id=uuid4(),
        start_date=START,
        end_date=START + timedelta(days=2),
        pickup_location="Kilimani",
        base_subtotal=2000,
        addon_subtotal=400,
        discount_amount=240,
        total_price=2160,
    )
    fields.update(overrides)
    return ReservationInput(**fields)


def test_allowed_transitions():
    assert can_transition(ReservationStatus.DRAFT, ReservationStatus.PENDING_PAYMENT)
    assert can_transition(ReservationStatus.PENDING_PAYMENT, ReservationStatus.CONFIRMED)
    assert can_transition(ReservationStatus.PENDING_PAYMENT, ReservationStatus.CANCELLED)


@pytest.mark.parametrize(
    "current,new",
    [
        (ReservationStatus.DRAFT, ReservationStatus.CONFIRMED),
        (ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED),
        (ReservationStatus.CONFIRMED, ReservationStatus.PENDING_PAYMENT),
        (ReservationStatus.CANCELLED, ReservationStatus.CONFIRMED),
        (ReservationStatus.CANCELLED, ReservationStatus.PENDING_PAYMENT),
    ],
)
def test_terminal_and_skipping_transitions_rejected(current, new):
    assert not can_transition(current, new)


def test_reservation_input_accepts_consistent_line_items():
    reservation = _input()
    assert reservation.total_price == 2160


def test_reservation_input_rejects_mismatched_total():
    with pytest.raises(ValueError, match="does not match line items"):
        _input(total_price=2400)


def test_reservation_input_rejects_inverted_dates():
    with pytest.raises(ValueError, match="end_date"):
        _input(end_date=START - timedelta(days=1))


def test_same_day_reservation_allowed():
    reservation = _input(end_date=START)
    assert reservation.end_date == reservation.start_date


def test_name_only_asset_reference():
    """A free-text bike name stands in for a missing asset id."""
    reservation = _input(asset_id=None, asset_name="Blue TVS Apache")
    assert reservation.asset_name == "Blue TVS Apache"

    with pytest.raises(ValueError, match="asset_id or asset_name"):
        _input(asset_id=None, asset_name=None)


def test_add_on_quantity_fixed_at_one():
    with pytest.raises(ValueError):
        ReservationAddOn(gear_id=uuid4(), name="Jacket", price_per_day=150, quantity=2)


def test_aware_datetime_converted_to_naive_utc():
    nairobi = timezone(timedelta(hours=3))

    assert to_naive_utc(datetime(2026, 11, 2, 12, 0, tzinfo=nairobi)) == START
    assert to_naive_utc(START) == START
    assert to_naive_utc(None) is None


def test_reservation_input_stores_naive_utc():
    reservation = _input(
        start_date=datetime(2026, 11, 2, 9, 0, tzinfo=timezone.utc),
        end_date="2026-11-04T12:00:00+03:00",
    )

    assert reservation.start_date == START
    assert reservation.end_date == START + timedelta(days=2)
    assert reservation.end_date.tzinfo is None


def test_booking_form_dates_parsed_from_utc_strings():
    intent = SettlementIntent(
        owner_id=uuid4(),
        asset_id=uuid4(),
        unit_rate=1500,
        start_date="2026-11-02T09:00:00Z",
        end_date="2026-11-05T09:00:00Z",
    )

    assert intent.start_date == START
    assert intent.start_date.tzinfo is None
    assert intent.end_date - intent.start_date == timedelta(days=3)
