"""Structured audit logging for settlement actions.

Provides an audit trail for every step that moves money or changes
booking state, so payments can be reconciled against reservations.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from motohire.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Types of auditable events."""

    # Reservation lifecycle
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_CANCELLED = "reservation_cancelled"

    # Payment flow
    PAYMENT_REQUESTED = "payment_requested"
    PAYMENT_SIMULATED = "payment_simulated"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_ESCALATED = "payment_escalated"

    # Rewards
    PROMO_REDEEMED = "promo_redeemed"
    LOYALTY_AWARDED = "loyalty_awarded"

    # Security
    PERMISSION_DENIED = "permission_denied"


class AuditLogger:
    """Centralized audit logging service."""

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        actor_id: UUID | str,
        resource_type: str,
        resource_id: UUID | str,
        action: str,
        success: bool = True,
        metadata: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log an auditable event with structured context.

        Args:
            event_type: Type of audit event
            actor_id: User (or "system") performing the action
            resource_type: Type of resource (reservation, payment, promo_code)
            resource_id: ID of the affected resource
            action: Human-readable action description
            success: Whether the action succeeded
            metadata: Additional context (amounts, codes, references)
            error: Error message if action failed
        """
        audit_entry = {
            "event_type": event_type.value,
            "actor_id": str(actor_id),
            "resource_type": resource_type,
            "resource_id": str(resource_id),
            "action": action,
            "success": success,
            "timestamp": datetime.utcnow().isoformat(),
            "metadata": metadata or {},
        }

        if error:
            audit_entry["error"] = error

        logger.info(
            "audit_event",
            **audit_entry,
        )

    @staticmethod
    def log_reservation_created(
        actor_id: UUID,
        reservation_id: UUID,
        total_price: int,
        promo_code: Optional[str],
    ) -> None:
        """Log provisional reservation creation."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_CREATED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action="Provisional reservation created",
            metadata={"total_price": total_price, "promo_code": promo_code},
        )

    @staticmethod
    def log_payment_requested(
        actor_id: UUID,
        reservation_id: UUID,
        amount: int,
        checkout_request_id: Optional[str],
        simulated: bool,
    ) -> None:
        """Log a push-payment request accepted by the provider (or simulated)."""
        event_type = (
            AuditEventType.PAYMENT_SIMULATED
            if simulated
            else AuditEventType.PAYMENT_REQUESTED
        )
        action = "Simulated payment prompt" if simulated else "Payment prompt sent"

        AuditLogger.log_event(
            event_type=event_type,
            actor_id=actor_id,
            resource_type="payment",
            resource_id=reservation_id,
            action=action,
            metadata={
                "amount": amount,
                "checkout_request_id": checkout_request_id,
                "simulated": simulated,
            },
        )

    @staticmethod
    def log_payment_settled(
        actor_id: UUID,
        reservation_id: UUID,
        amount: int,
        receipt: Optional[str],
    ) -> None:
        """Log confirmed payment and reservation."""
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_SETTLED,
            actor_id=actor_id,
            resource_type="payment",
            resource_id=reservation_id,
            action="Payment settled, reservation confirmed",
            metadata={"amount": amount, "receipt": receipt},
        )

    @staticmethod
    def log_payment_rejected(
        actor_id: UUID,
        reservation_id: UUID,
        reason: str,
    ) -> None:
        """Log a rejected payment."""
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_REJECTED,
            actor_id=actor_id,
            resource_type="payment",
            resource_id=reservation_id,
            action="Payment rejected",
            success=False,
            error=reason,
        )

    @staticmethod
    def log_payment_escalated(
        reservation_id: UUID,
        error: str,
    ) -> None:
        """Log a paid reservation that could not be confirmed."""
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_ESCALATED,
            actor_id="system",
            resource_type="payment",
            resource_id=reservation_id,
            action="Paid reservation could not be confirmed",
            success=False,
            error=error,
        )

    @staticmethod
    def log_reservation_cancelled(
        actor_id: UUID | str,
        reservation_id: UUID,
        reason: str,
    ) -> None:
        """Log reservation cancellation."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_CANCELLED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action="Reservation cancelled",
            metadata={"reason": reason},
        )

    @staticmethod
    def log_promo_redeemed(
        actor_id: UUID,
        promo_code_id: UUID,
        code: str,
        reservation_id: UUID,
    ) -> None:
        """Log promo code redemption."""
        AuditLogger.log_event(
            event_type=AuditEventType.PROMO_REDEEMED,
            actor_id=actor_id,
            resource_type="promo_code",
            resource_id=promo_code_id,
            action=f"Redeemed promo code: {code}",
            metadata={"reservation_id": str(reservation_id)},
        )

    @staticmethod
    def log_loyalty_awarded(
        actor_id: UUID,
        reservation_id: UUID,
        points: int,
    ) -> None:
        """Log loyalty point accrual."""
        AuditLogger.log_event(
            event_type=AuditEventType.LOYALTY_AWARDED,
            actor_id=actor_id,
            resource_type="loyalty",
            resource_id=reservation_id,
            action=f"Awarded {points} points",
            metadata={"points": points},
        )

    @staticmethod
    def log_permission_denied(
        actor_id: UUID,
        resource_type: str,
        resource_id: UUID | str,
        attempted_action: str,
    ) -> None:
        """Log unauthorized access attempts."""
        AuditLogger.log_event(
            event_type=AuditEventType.PERMISSION_DENIED,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            action=f"Permission denied: {attempted_action}",
            success=False,
            metadata={"attempted_action": attempted_action},
        )
