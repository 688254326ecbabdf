"""Promo code domain model."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from motohire.models.reservation import to_naive_utc


class DiscountType(str, Enum):
    """How a promo code reduces the order."""

    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


def canonicalize_code(code: str) -> str:
    """Normalize a user-typed code for lookup."""
    return code.strip().upper()


class PromoCode(BaseModel):
    """Promo code entity."""

    id: UUID = Field(default_factory=uuid4)
    code: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: int = Field(gt=0)
    min_order_value: int = Field(default=0, ge=0)
    max_uses: Optional[int] = Field(default=None, gt=0, description="None means unlimited")
    current_uses: int = Field(default=0, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Codes are stored uppercase."""
        return canonicalize_code(v)

    @field_validator("valid_from", "valid_until")
    @classmethod
    def normalize_window(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @field_validator("discount_value")
    @classmethod
    def validate_discount_value(cls, v: int, info) -> int:
        """Percentages cannot exceed 100."""
        if info.data.get("discount_type") == DiscountType.PERCENTAGE and v > 100:
            raise ValueError("percentage discount cannot exceed 100")
        return v

    @property
    def usage_cap_reached(self) -> bool:
        """Check if the code has been used up."""
        return self.max_uses is not None and self.current_uses >= self.max_uses

    def is_within_window(self, now: datetime) -> bool:
        """Check the activation window."""
        now = to_naive_utc(now)
        if self.valid_from is not None and now < self.valid_from:
            return False
        if self.valid_until is not None and now > self.valid_until:
            return False
        return True

    def is_applicable(self, order_total: int, now: datetime) -> bool:
        """Check whether the code can be applied to an order."""
        return (
            self.active
            and self.is_within_window(now)
            and order_total >= self.min_order_value
            and not self.usage_cap_reached
        )
