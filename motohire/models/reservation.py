"""Reservation domain model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

# Column width for free-text reservation fields
TEXT_FIELD_MAX_LENGTH = 200


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ReservationStatus(str, Enum):
    """Reservation status enumeration.

    DRAFT only exists client-side while the rider fills in the form and is
    never written to storage.
    """

    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.DRAFT: frozenset({ReservationStatus.PENDING_PAYMENT}),
    ReservationStatus.PENDING_PAYMENT: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}


def can_transition(current: ReservationStatus, new: ReservationStatus) -> bool:
    """Check whether a status change is an allowed edge."""
    return new in ALLOWED_TRANSITIONS[current]


class ReservationAddOn(BaseModel):
    """Safety gear rented alongside the bike (value object)."""

    gear_id: UUID
    name: str = Field(min_length=1, max_length=100)
    price_per_day: int = Field(ge=0)
    quantity: int = Field(default=1, ge=1, le=1)


class Reservation(BaseModel):
    """Reservation entity for a motorcycle rental."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID = Field(description="Profile of the rider")
    asset_id: Optional[UUID] = Field(default=None, description="Rented bike")
    asset_name: Optional[str] = Field(default=None, max_length=TEXT_FIELD_MAX_LENGTH)
    start_date: datetime = Field(description="Pickup date")
    end_date: datetime = Field(description="Return date")
    pickup_location: str = Field(min_length=1, max_length=TEXT_FIELD_MAX_LENGTH)
    notes: Optional[str] = None
    add_ons: list[ReservationAddOn] = Field(default_factory=list)
    base_subtotal: int = Field(ge=0)
    addon_subtotal: int = Field(default=0, ge=0)
    discount_amount: int = Field(default=0, ge=0)
    total_price: int = Field(ge=0, description="Amount charged in KES")
    promo_code_id: Optional[UUID] = None
    promo_code: Optional[str] = None
    status: ReservationStatus = Field(default=ReservationStatus.PENDING_PAYMENT)
    payer_phone: Optional[str] = None
    payment_reference: Optional[str] = Field(
        default=None, description="Provider checkout request ID"
    )
    payment_receipt: Optional[str] = None
    payment_simulated: bool = False
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_cancellable(self) -> bool:
        """Check if the rider may still cancel."""
        return self.status == ReservationStatus.PENDING_PAYMENT

    @property
    def display_name(self) -> str:
        """Bike name for confirmation screens."""
        return self.asset_name or str(self.asset_id)


class ReservationInput(BaseModel):
    """Input model for reservation creation."""

    owner_id: UUID
    asset_id: Optional[UUID] = None
    asset_name: Optional[str] = Field(default=None, max_length=TEXT_FIELD_MAX_LENGTH)
    start_date: datetime
    end_date: datetime
    pickup_location: str = Field(min_length=1, max_length=TEXT_FIELD_MAX_LENGTH)
    notes: Optional[str] = None
    add_ons: list[ReservationAddOn] = Field(default_factory=list)
    base_subtotal: int = Field(ge=0)
    addon_subtotal: int = Field(default=0, ge=0)
    discount_amount: int = Field(default=0, ge=0)
    total_price: int = Field(ge=0)
    promo_code_id: Optional[UUID] = None
    promo_code: Optional[str] = None
    payer_phone: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def validate_reservation(self) -> "ReservationInput":
        """Ensure the asset, date range and line items are consistent."""
        if self.asset_id is None and not self.asset_name:
            raise ValueError("asset_id or asset_name is required")
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        expected = self.base_subtotal + self.addon_subtotal - self.discount_amount
        if self.total_price != max(0, expected):
            raise ValueError(
                f"total_price {self.total_price} does not match line items ({max(0, expected)})"
            )
        return self
