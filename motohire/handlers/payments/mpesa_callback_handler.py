"""M-Pesa STK callback handler.

The provider retries callbacks it considers unacknowledged, so every
parseable callback is acknowledged, including ones we cannot match.
"""

from typing import Any

from motohire.logging import get_logger
from motohire.models.errors import ReservationNotFound, SettlementEscalation
from motohire.models.payment import PaymentOutcome
from motohire.services.mpesa_gateway import MpesaGateway
from motohire.services.settlement_flow import SettlementOrchestrator

logger = get_logger(__name__)

ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}
NACK = {"ResultCode": 1, "ResultDesc": "Rejected"}


async def handle_mpesa_callback(
    payload: dict[str, Any], orchestrator: SettlementOrchestrator
) -> dict[str, Any]:
    """
    Process an STK push callback.

    Args:
        payload: JSON body posted by Daraja
        orchestrator: Settlement orchestrator applying the outcome

    Returns:
        Acknowledgement body for the provider
    """
    try:
        callback = MpesaGateway.parse_callback(payload)
    except ValueError as e:
        logger.warning("mpesa_callback_malformed", error=str(e))
        return NACK

    logger.info(
        "mpesa_callback_received",
        checkout_request_id=callback.checkout_request_id,
        result_code=callback.result_code,
        amount=callback.amount,
    )

    reservation_id = await orchestrator.resolve_checkout_request(callback.checkout_request_id)
    if reservation_id is None:
        logger.warning(
            "mpesa_callback_unmatched",
            checkout_request_id=callback.checkout_request_id,
            result_code=callback.result_code,
            receipt=callback.receipt_number,
        )
        return ACK

    try:
        outcome = callback.outcome
        if outcome == PaymentOutcome.SETTLED:
            await orchestrator.on_payment_settled(
                reservation_id, receipt=callback.receipt_number, amount=callback.amount
            )
        elif outcome == PaymentOutcome.CANCELLED:
            await orchestrator.on_payment_cancelled(reservation_id)
        else:
            await orchestrator.on_payment_rejected(
                reservation_id, callback.result_desc or "Payment declined"
            )

    except SettlementEscalation as e:
        logger.error(
            "mpesa_callback_escalated",
            reservation_id=str(reservation_id),
            checkout_request_id=callback.checkout_request_id,
            receipt=callback.receipt_number,
            error=str(e),
        )

    except ReservationNotFound:
        logger.warning(
            "mpesa_callback_reservation_missing",
            reservation_id=str(reservation_id),
            checkout_request_id=callback.checkout_request_id,
        )

    except Exception as e:
        logger.error(
            "mpesa_callback_processing_failed",
            reservation_id=str(reservation_id),
            checkout_request_id=callback.checkout_request_id,
            error=str(e),
            exc_info=True,
        )

    return ACK
