"""Integration test for the settlement flow.

Runs the orchestrator against real repositories:
1. Submit booking with promo code
2. Provisional reservation created and payment prompt sent
3. Provider callback settles payment
4. Reservation confirmed, promo use counted, loyalty points credited
"""

from datetime import timedelta, timezone

import pytest

from motohire.handlers.payments.mpesa_callback_handler import handle_mpesa_callback
from motohire.models.payment import PushAccepted
from motohire.models.promo_code import DiscountType, PromoCode
from motohire.models.reservation import ReservationStatus
from motohire.models.settlement import SettlementIntent, Settled
from motohire.services.loyalty_award import LoyaltyAwardService
from motohire.services.settlement_flow import SettlementErrorCode, SettlementOrchestrator
from motohire.storage.postgres_loyalty_repo import PostgresLoyaltyRepository
from motohire.storage.postgres_promo_code_repo import PostgresPromoCodeRepository
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository


def _callback(checkout_request_id, result_code=0, receipt="NLJ7RT61SV", amount=4590):
    stk = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully.",
    }
    if result_code == 0:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": stk}}


@pytest.fixture
def orchestrator(session, mock_gateway, mock_lock_helper):
    mock_gateway.request_push.return_value = PushAccepted(
        provider_message="Success. Request accepted for processing",
        checkout_request_id="ws_CO_191220191020363925",
    )
    return SettlementOrchestrator(
        reservation_repo=PostgresReservationRepository(session),
        promo_repo=PostgresPromoCodeRepository(session),
        gateway=mock_gateway,
        loyalty_service=LoyaltyAwardService(PostgresLoyaltyRepository(session)),
        lock_helper=mock_lock_helper,
        confirm_retry_backoff_seconds=0,
    )


@pytest.mark.asyncio
async def test_paid_booking_end_to_end(session, orchestrator, sample_intent):
    promo_repo = PostgresPromoCodeRepository(session)
    promo = await promo_repo.create(
        PromoCode(code="SAVE10", discount_type=DiscountType.PERCENTAGE, discount_value=10, max_uses=10)
    )

    started = await orchestrator.start_settlement(
        sample_intent.model_copy(update={"promo_code": "save10"})
    )
    assert started.success
    assert started.reservation.total_price == 4590

    ack = await handle_mpesa_callback(_callback("ws_CO_191220191020363925"), orchestrator)
    assert ack == {"ResultCode": 0, "ResultDesc": "Accepted"}

    reservation = await orchestrator.get_reservation(started.reservation_id)
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.payment_receipt == "NLJ7RT61SV"
    assert orchestrator.get_state(started.reservation_id) == Settled(
        reservation_id=started.reservation_id, receipt="NLJ7RT61SV"
    )

    assert (await promo_repo.get_by_id(promo.id)).current_uses == 1

    account = await PostgresLoyaltyRepository(session).get_account(sample_intent.owner_id)
    assert account.total_points == 450


@pytest.mark.asyncio
async def test_duplicate_callback_awards_once(session, orchestrator, sample_intent):
    started = await orchestrator.start_settlement(sample_intent)

    await handle_mpesa_callback(_callback("ws_CO_191220191020363925", amount=5100), orchestrator)
    await handle_mpesa_callback(_callback("ws_CO_191220191020363925", amount=5100), orchestrator)

    loyalty_repo = PostgresLoyaltyRepository(session)
    account = await loyalty_repo.get_account(sample_intent.owner_id)
    assert account.total_points == 510
    assert len(await loyalty_repo.get_transactions(sample_intent.owner_id)) == 1
    assert (await orchestrator.get_reservation(started.reservation_id)).status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_second_booking_for_same_dates_rejected(orchestrator, sample_intent, mock_gateway):
    first = await orchestrator.start_settlement(sample_intent)
    mock_gateway.request_push.return_value = PushAccepted(
        provider_message="ok", checkout_request_id="ws_CO_second"
    )

    second = await orchestrator.start_settlement(
        sample_intent.model_copy(
            update={"start_date": sample_intent.start_date + timedelta(days=1)}
        )
    )

    assert first.success
    assert second.error_code == SettlementErrorCode.ASSET_UNAVAILABLE


@pytest.mark.asyncio
async def test_cancel_releases_dates(orchestrator, sample_intent, mock_gateway):
    first = await orchestrator.start_settlement(sample_intent)
    await orchestrator.cancel_settlement(first.reservation_id, owner_id=sample_intent.owner_id)
    mock_gateway.request_push.return_value = PushAccepted(
        provider_message="ok", checkout_request_id="ws_CO_second"
    )

    second = await orchestrator.start_settlement(sample_intent)

    assert second.success


@pytest.mark.asyncio
async def test_dismissed_prompt_cancels_reservation(orchestrator, sample_intent):
    started = await orchestrator.start_settlement(sample_intent)

    await handle_mpesa_callback(_callback("ws_CO_191220191020363925", result_code=1032), orchestrator)

    reservation = await orchestrator.get_reservation(started.reservation_id)
    assert reservation.status == ReservationStatus.CANCELLED
    assert reservation.cancellation_reason == "payment_cancelled"


@pytest.mark.asyncio
async def test_aware_dates_still_detect_overlap(orchestrator, sample_intent, mock_gateway, rental_start):
    aware = SettlementIntent(
        **{
            **sample_intent.model_dump(),
            "start_date": rental_start.replace(tzinfo=timezone.utc),
            "end_date": (rental_start + timedelta(days=3)).replace(tzinfo=timezone.utc),
        }
    )

    first = await orchestrator.start_settlement(aware)
    mock_gateway.request_push.return_value = PushAccepted(
        provider_message="ok", checkout_request_id="ws_CO_second"
    )
    second = await orchestrator.start_settlement(aware)

    assert first.success
    assert first.reservation.start_date == rental_start
    assert second.error_code == SettlementErrorCode.ASSET_UNAVAILABLE


@pytest.mark.asyncio
async def test_underpaid_callback_not_confirmed(session, orchestrator, sample_intent):
    started = await orchestrator.start_settlement(sample_intent)

    ack = await handle_mpesa_callback(_callback("ws_CO_191220191020363925", amount=1), orchestrator)

    assert ack == {"ResultCode": 0, "ResultDesc": "Accepted"}
    reservation = await orchestrator.get_reservation(started.reservation_id)
    assert reservation.status == ReservationStatus.CANCELLED
    assert reservation.cancellation_reason == "payment_amount_mismatch"
    assert await PostgresLoyaltyRepository(session).get_account(sample_intent.owner_id) is None
