"""Models package - Pydantic domain models."""

from .loyalty import LoyaltyAccount, LoyaltyAccrual, LoyaltyTier, SourceKind, TransactionType
from .payment import (
    PaymentAttempt,
    PaymentAttemptStatus,
    PaymentCallback,
    PaymentOutcome,
    PushAccepted,
    PushRejected,
    RejectionKind,
)
from .promo_code import DiscountType, PromoCode, canonicalize_code
from .reservation import Reservation, ReservationAddOn, ReservationInput, ReservationStatus
from .settlement import (
    AwaitingPayment,
    CollectingDetails,
    Failed,
    Settled,
    SettlementFlow,
    SettlementIntent,
)

__all__ = [
    "LoyaltyAccount",
    "LoyaltyAccrual",
    "LoyaltyTier",
    "SourceKind",
    "TransactionType",
    "PaymentAttempt",
    "PaymentAttemptStatus",
    "PaymentCallback",
    "PaymentOutcome",
    "PushAccepted",
    "PushRejected",
    "RejectionKind",
    "DiscountType",
    "PromoCode",
    "canonicalize_code",
    "Reservation",
    "ReservationAddOn",
    "ReservationInput",
    "ReservationStatus",
    "AwaitingPayment",
    "CollectingDetails",
    "Failed",
    "Settled",
    "SettlementFlow",
    "SettlementIntent",
]
