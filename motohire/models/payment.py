"""Payment domain models for M-Pesa push payments."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

# Daraja result code when the payer dismisses the prompt
RESULT_CODE_CANCELLED_BY_USER = 1032


class PaymentAttemptStatus(str, Enum):
    """Status of one push-payment attempt (kept in memory only)."""

    IDLE = "idle"
    REQUESTING = "requesting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SETTLED = "settled"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


class RejectionKind(str, Enum):
    """Why a push request was not accepted."""

    CONFIGURATION = "configuration"
    BUSINESS = "business"


class PaymentOutcome(str, Enum):
    """Terminal (or not yet terminal) result reported by the provider."""

    SETTLED = "settled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    PENDING = "pending"


@dataclass(frozen=True)
class PushAccepted:
    """Provider queued a prompt on the payer's phone. Not proof of payment."""

    provider_message: str
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    simulated: bool = False


@dataclass(frozen=True)
class PushRejected:
    """Provider (or local validation) refused the push request."""

    kind: RejectionKind
    reason: str


PushResult = Union[PushAccepted, PushRejected]


@dataclass(frozen=True)
class PaymentStatusQuery:
    """Result of asking the provider about a checkout request."""

    outcome: PaymentOutcome
    result_code: Optional[int] = None
    result_desc: str = ""


class PaymentAttempt(BaseModel):
    """One push-payment attempt for a provisional reservation."""

    reference: UUID = Field(description="Always the provisional reservation id")
    amount: int = Field(ge=0, description="Zero for fully discounted rentals")
    payer_phone: str
    status: PaymentAttemptStatus = PaymentAttemptStatus.IDLE
    checkout_request_id: Optional[str] = None
    simulated: bool = False
    provider_message: Optional[str] = None
    failure_reason: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.utcnow)


class PaymentCallback(BaseModel):
    """STK callback body posted by the provider."""

    merchant_request_id: Optional[str] = None
    checkout_request_id: str
    result_code: int
    result_desc: str = ""
    amount: Optional[int] = None
    receipt_number: Optional[str] = None
    phone_number: Optional[str] = None

    @property
    def outcome(self) -> PaymentOutcome:
        """Map the provider result code to an outcome."""
        if self.result_code == 0:
            return PaymentOutcome.SETTLED
        if self.result_code == RESULT_CODE_CANCELLED_BY_USER:
            return PaymentOutcome.CANCELLED
        return PaymentOutcome.REJECTED
