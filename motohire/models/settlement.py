"""Settlement state machine types.

A booking flow is always in exactly one of four states::

    CollectingDetails --submit--> AwaitingPayment --settle--> Settled
            ^                        |      |
            +------ cancel ----------+      +--fail--> Failed
            +------------------ retry ------------------+

Transitions are methods on SettlementFlow; driving the flow with an event
that is not valid for the current state raises IllegalSettlementTransition.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from motohire.models.errors import IllegalSettlementTransition
from motohire.models.payment import PaymentAttempt, PaymentAttemptStatus
from motohire.models.reservation import ReservationAddOn, to_naive_utc


@dataclass(frozen=True)
class CollectingDetails:
    """Rider is filling in (or back to editing) the booking form."""

    last_error: Optional[str] = None


@dataclass(frozen=True)
class AwaitingPayment:
    """Provisional reservation exists; payment sub-flow in progress."""

    reservation_id: UUID
    attempt: PaymentAttempt


@dataclass(frozen=True)
class Settled:
    """Payment confirmed and reservation finalized."""

    reservation_id: UUID
    receipt: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    """Payment was rejected; the rider may retry with a new reservation."""

    reservation_id: UUID
    reason: str


SettlementState = Union[CollectingDetails, AwaitingPayment, Settled, Failed]


def state_name(state: SettlementState) -> str:
    """Stable snake_case name for logs and API responses."""
    if isinstance(state, CollectingDetails):
        return "collecting_details"
    if isinstance(state, AwaitingPayment):
        return "awaiting_payment"
    if isinstance(state, Settled):
        return "settled"
    if isinstance(state, Failed):
        return "failed"
    raise TypeError(f"Unknown settlement state: {state!r}")


class SettlementFlow:
    """Explicit state machine for one booking attempt."""

    def __init__(self, owner_id: UUID):
        self.owner_id = owner_id
        self.state: SettlementState = CollectingDetails()
        self.history: list[str] = [state_name(self.state)]

    def _move(self, new_state: SettlementState) -> SettlementState:
        self.state = new_state
        self.history.append(state_name(new_state))
        return new_state

    def _require_awaiting(self, event: str) -> AwaitingPayment:
        if not isinstance(self.state, AwaitingPayment):
            raise IllegalSettlementTransition(state_name(self.state), event)
        return self.state

    @property
    def reservation_id(self) -> Optional[UUID]:
        """Reservation tied to the current state, if any."""
        if isinstance(self.state, CollectingDetails):
            return None
        return self.state.reservation_id

    def submit(self, reservation_id: UUID, attempt: PaymentAttempt) -> AwaitingPayment:
        """Provisional reservation created; enter the payment sub-flow."""
        if not isinstance(self.state, CollectingDetails):
            raise IllegalSettlementTransition(state_name(self.state), "submit")
        if attempt.reference != reservation_id:
            raise IllegalSettlementTransition(
                state_name(self.state), "submit_with_mismatched_reference"
            )
        return self._move(AwaitingPayment(reservation_id=reservation_id, attempt=attempt))

    def update_attempt(self, status: PaymentAttemptStatus, **changes) -> AwaitingPayment:
        """Advance the payment sub-flow without leaving AwaitingPayment."""
        current = self._require_awaiting(f"attempt_{status.value}")
        attempt = current.attempt.model_copy(update={"status": status, **changes})
        return self._move(replace(current, attempt=attempt))

    def settle(self, receipt: Optional[str] = None) -> Settled:
        """Payment confirmed."""
        current = self._require_awaiting("settle")
        return self._move(Settled(reservation_id=current.reservation_id, receipt=receipt))

    def fail(self, reason: str) -> Failed:
        """Payment rejected by the provider."""
        current = self._require_awaiting("fail")
        return self._move(Failed(reservation_id=current.reservation_id, reason=reason))

    def cancel(self, message: Optional[str] = None) -> CollectingDetails:
        """Rider (or payer) cancelled while awaiting payment."""
        self._require_awaiting("cancel")
        return self._move(CollectingDetails(last_error=message))

    def retry(self) -> CollectingDetails:
        """Start over after a failed payment."""
        if not isinstance(self.state, Failed):
            raise IllegalSettlementTransition(state_name(self.state), "retry")
        return self._move(CollectingDetails(last_error=self.state.reason))


class SettlementIntent(BaseModel):
    """Booking form submission.

    Fields are deliberately permissive; the orchestrator reports missing
    or inconsistent values as field errors instead of raising.
    """

    owner_id: UUID
    asset_id: Optional[UUID] = None
    asset_name: Optional[str] = None
    unit_rate: int = Field(ge=0, description="Bike day rate in KES")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    pickup_location: str = ""
    payer_phone: str = ""
    add_ons: list[ReservationAddOn] = Field(default_factory=list)
    promo_code: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Stored timestamps are naive UTC; aware input is converted."""
        return to_naive_utc(v)
