"""Booking handlers: submit, cancel and summarize rider reservations."""

from typing import Any, Optional
from uuid import UUID

from motohire.handlers import ERROR_TEMPLATES
from motohire.logging import get_logger
from motohire.logging.audit import AuditLogger
from motohire.models.reservation import Reservation, ReservationStatus
from motohire.models.settlement import SettlementIntent
from motohire.services.discount_validation import DiscountRejection, DiscountValidation
from motohire.services.settlement_flow import (
    SettlementErrorCode,
    SettlementOrchestrator,
    SettlementResult,
)

logger = get_logger(__name__)


class HandlerResponse:
    """Rider-facing outcome of a handler call."""

    def __init__(
        self,
        ok: bool,
        message: str,
        reservation_id: Optional[UUID] = None,
        data: Optional[dict[str, Any]] = None,
    ):
        self.ok = ok
        self.message = message
        self.reservation_id = reservation_id
        self.data = data or {}


def format_kes(amount: int) -> str:
    return f"KES {amount:,}"


def promo_message(discount: DiscountValidation) -> Optional[str]:
    """Message for a promo code that was not applied."""
    if discount.ok or discount.reason is None:
        return None
    if discount.reason == DiscountRejection.BELOW_MINIMUM_ORDER:
        return ERROR_TEMPLATES["promo_below_minimum_order"](discount.minimum_order or 0)
    return ERROR_TEMPLATES[f"promo_{discount.reason.value}"]()


def error_message(result: SettlementResult) -> str:
    """Message for a failed settlement result."""
    code = result.error_code
    if code == SettlementErrorCode.PAYMENT_FAILED:
        return ERROR_TEMPLATES["payment_failed"](result.error or "declined")
    if code == SettlementErrorCode.NOT_CANCELLABLE:
        status = result.reservation.status.value if result.reservation else "closed"
        return ERROR_TEMPLATES["not_cancellable"](status.replace("_", " "))
    if code is not None and code.value in ERROR_TEMPLATES:
        return ERROR_TEMPLATES[code.value]()
    return ERROR_TEMPLATES["reservation_failed"]()


def summarize(reservation: Reservation) -> str:
    """Multi-line booking summary."""
    lines = [
        f"🏍️ {reservation.display_name}",
        f"📅 {reservation.start_date:%d %b %Y} → {reservation.end_date:%d %b %Y}",
        f"📍 {reservation.pickup_location}",
        f"Bike: {format_kes(reservation.base_subtotal)}",
    ]
    for add_on in reservation.add_ons:
        lines.append(f"  + {add_on.name}")
    if reservation.addon_subtotal:
        lines.append(f"Gear: {format_kes(reservation.addon_subtotal)}")
    if reservation.discount_amount:
        lines.append(
            f"Discount ({reservation.promo_code}): -{format_kes(reservation.discount_amount)}"
        )
    lines.append(f"Total: {format_kes(reservation.total_price)}")
    lines.append(f"Status: {reservation.status.value.replace('_', ' ')}")
    if reservation.payment_receipt:
        lines.append(f"M-Pesa receipt: {reservation.payment_receipt}")
    return "\n".join(lines)


async def handle_start_settlement(
    intent: SettlementIntent, orchestrator: SettlementOrchestrator
) -> HandlerResponse:
    """Submit the booking form and request payment."""
    result = await orchestrator.start_settlement(intent)

    data: dict[str, Any] = {"state": result.state_name}
    notices: list[str] = []

    if result.discount is not None:
        notice = promo_message(result.discount)
        if notice:
            notices.append(notice)
            data["promo_rejection"] = result.discount.reason.value

    if result.price is not None:
        data["total"] = result.price.total
        data["discount_amount"] = result.price.discount_amount
        data["billed_days"] = result.price.billed_days

    if not result.success:
        data["error_code"] = result.error_code.value if result.error_code else None
        data["field_errors"] = [code.value for code in result.field_errors]
        message = "\n\n".join(
            [error_message(SettlementResult(False, error_code=code)) for code in result.field_errors]
            or [error_message(result)]
        )
        return HandlerResponse(
            ok=False,
            message="\n\n".join([message, *notices]),
            reservation_id=result.reservation_id,
            data=data,
        )

    reservation = result.reservation
    if reservation.status == ReservationStatus.CONFIRMED:
        headline = "✅ Booking confirmed!"
    else:
        headline = f"📱 {result.provider_message or 'Check your phone to complete payment.'}"

    return HandlerResponse(
        ok=True,
        message="\n\n".join([headline, summarize(reservation), *notices]),
        reservation_id=reservation.id,
        data=data,
    )


async def handle_cancel_settlement(
    reservation_id: UUID, owner_id: UUID, orchestrator: SettlementOrchestrator
) -> HandlerResponse:
    """Rider cancels a booking that is still awaiting payment."""
    result = await orchestrator.cancel_settlement(reservation_id, owner_id=owner_id)

    if not result.success:
        return HandlerResponse(
            ok=False,
            message=error_message(result),
            reservation_id=reservation_id,
            data={"error_code": result.error_code.value if result.error_code else None},
        )

    logger.info(
        "reservation_cancelled_by_rider",
        reservation_id=str(reservation_id),
        owner_id=str(owner_id),
    )

    return HandlerResponse(
        ok=True,
        message="✅ Reservation cancelled.\n\nThe bike has been released for those dates.",
        reservation_id=reservation_id,
        data={"state": result.state_name},
    )


async def handle_reservation_summary(
    reservation_id: UUID, owner_id: UUID, orchestrator: SettlementOrchestrator
) -> HandlerResponse:
    """Show one of the rider's reservations."""
    reservation = await orchestrator.get_reservation(reservation_id)

    if reservation is None:
        return HandlerResponse(ok=False, message=ERROR_TEMPLATES["reservation_not_found"]())

    if reservation.owner_id != owner_id:
        AuditLogger.log_permission_denied(
            actor_id=owner_id,
            resource_type="reservation",
            resource_id=reservation_id,
            attempted_action="view",
        )
        return HandlerResponse(ok=False, message=ERROR_TEMPLATES["permission_denied"]())

    return HandlerResponse(
        ok=True,
        message=summarize(reservation),
        reservation_id=reservation.id,
        data={
            "status": reservation.status.value,
            "total": reservation.total_price,
            "cancellable": reservation.is_cancellable,
        },
    )
