"""Contract tests for the M-Pesa callback handler.

The provider expects {"ResultCode": 0} for every callback it should stop
retrying, and a non-zero code only for bodies we could not read.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from motohire.handlers.payments.mpesa_callback_handler import ACK, NACK, handle_mpesa_callback
from motohire.models.errors import ReservationNotFound, SettlementEscalation


def _payload(result_code, receipt=None, checkout_request_id="ws_CO_1"):
    stk = {
        "MerchantRequestID": "29115-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "DS timeout user cannot be reached" if result_code else "Success",
    }
    if receipt:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 5100},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
            ]
        }
    return {"Body": {"stkCallback": stk}}


@pytest.fixture
def reservation_id():
    return uuid4()


@pytest.fixture
def orchestrator(reservation_id):
    mock = MagicMock()
    mock.resolve_checkout_request = AsyncMock(return_value=reservation_id)
    mock.on_payment_settled = AsyncMock()
    mock.on_payment_cancelled = AsyncMock()
    mock.on_payment_rejected = AsyncMock()
    return mock


def test_acknowledgement_bodies():
    assert ACK["ResultCode"] == 0
    assert NACK["ResultCode"] != 0
    assert set(ACK) == set(NACK) == {"ResultCode", "ResultDesc"}


@pytest.mark.asyncio
async def test_successful_payment_settles(orchestrator, reservation_id):
    response = await handle_mpesa_callback(_payload(0, receipt="NLJ7RT61SV"), orchestrator)

    assert response == ACK
    orchestrator.resolve_checkout_request.assert_awaited_once_with("ws_CO_1")
    orchestrator.on_payment_settled.assert_awaited_once_with(
        reservation_id, receipt="NLJ7RT61SV", amount=5100
    )


@pytest.mark.asyncio
async def test_dismissed_prompt_cancels(orchestrator, reservation_id):
    response = await handle_mpesa_callback(_payload(1032), orchestrator)

    assert response == ACK
    orchestrator.on_payment_cancelled.assert_awaited_once_with(reservation_id)
    orchestrator.on_payment_settled.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_payment_rejects_with_provider_reason(orchestrator, reservation_id):
    response = await handle_mpesa_callback(_payload(1037), orchestrator)

    assert response == ACK
    orchestrator.on_payment_rejected.assert_awaited_once_with(
        reservation_id, "DS timeout user cannot be reached"
    )


@pytest.mark.asyncio
async def test_malformed_body_is_refused(orchestrator):
    response = await handle_mpesa_callback({"unexpected": True}, orchestrator)

    assert response == NACK
    orchestrator.resolve_checkout_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_checkout_request_acknowledged(orchestrator):
    orchestrator.resolve_checkout_request.return_value = None

    response = await handle_mpesa_callback(_payload(0, receipt="NLJ7RT61SV"), orchestrator)

    assert response == ACK
    orchestrator.on_payment_settled.assert_not_awaited()


@pytest.mark.asyncio
async def test_escalation_still_acknowledged(orchestrator, reservation_id):
    orchestrator.on_payment_settled.side_effect = SettlementEscalation(
        reservation_id, "reservation already cancelled"
    )

    response = await handle_mpesa_callback(_payload(0, receipt="NLJ7RT61SV"), orchestrator)

    assert response == ACK


@pytest.mark.asyncio
async def test_missing_reservation_still_acknowledged(orchestrator, reservation_id):
    orchestrator.on_payment_cancelled.side_effect = ReservationNotFound(reservation_id)

    response = await handle_mpesa_callback(_payload(1032), orchestrator)

    assert response == ACK
