"""Promo code validation service.

Checks a code against an order before it is applied:
- Existence
- Active flag
- Minimum order value
- Usage cap
- Validity window

Checks run in that order and the first failure is reported, so riders
always see the same message for the same code. Validation never counts
a use; redemption happens when the reservation is confirmed.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from motohire.logging import get_logger
from motohire.models.promo_code import PromoCode, canonicalize_code
from motohire.models.reservation import to_naive_utc
from motohire.services.pricing import compute_discount
from motohire.storage.postgres_promo_code_repo import PostgresPromoCodeRepository

logger = get_logger(__name__)


class DiscountRejection(str, Enum):
    """Why a promo code was not applied."""

    EMPTY_CODE = "empty_code"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    BELOW_MINIMUM_ORDER = "below_minimum_order"
    USAGE_CAP_REACHED = "usage_cap_reached"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"


class DiscountValidation:
    """Result of promo code validation."""

    def __init__(
        self,
        promo_code: Optional[PromoCode] = None,
        discount_amount: int = 0,
        reason: Optional[DiscountRejection] = None,
        minimum_order: Optional[int] = None,
    ):
        self.promo_code = promo_code
        self.discount_amount = discount_amount
        self.reason = reason
        self.minimum_order = minimum_order

    @property
    def ok(self) -> bool:
        """Check if the code can be applied."""
        return self.reason is None and self.promo_code is not None

    @classmethod
    def rejected(
        cls,
        reason: DiscountRejection,
        promo_code: Optional[PromoCode] = None,
        minimum_order: Optional[int] = None,
    ) -> "DiscountValidation":
        return cls(promo_code=promo_code, reason=reason, minimum_order=minimum_order)


class DiscountValidator:
    """Validates promo codes against an order subtotal."""

    def __init__(self, promo_repo: PostgresPromoCodeRepository):
        self.promo_repo = promo_repo

    async def validate(
        self,
        code: str,
        order_subtotal: int,
        now: Optional[datetime] = None,
    ) -> DiscountValidation:
        """
        Validate a promo code for an order.

        Args:
            code: Code as typed by the rider
            order_subtotal: Bike plus gear amount before discount
            now: Evaluation instant (defaults to current UTC time)

        Returns:
            DiscountValidation with the discount amount or a rejection reason
        """
        now = to_naive_utc(now) or datetime.utcnow()
        canonical = canonicalize_code(code or "")

        if not canonical:
            return DiscountValidation.rejected(DiscountRejection.EMPTY_CODE)

        promo = await self.promo_repo.get_by_code(canonical)
        result = self.check(promo, order_subtotal, now)

        logger.info(
            "promo_code_validated",
            code=canonical,
            order_subtotal=order_subtotal,
            ok=result.ok,
            reason=result.reason.value if result.reason else None,
            discount_amount=result.discount_amount,
        )
        return result

    @staticmethod
    def check(
        promo: Optional[PromoCode],
        order_subtotal: int,
        now: datetime,
    ) -> DiscountValidation:
        """Apply the validation rules to an already-loaded code."""
        now = to_naive_utc(now)
        if promo is None:
            return DiscountValidation.rejected(DiscountRejection.NOT_FOUND)

        if not promo.active:
            return DiscountValidation.rejected(DiscountRejection.INACTIVE, promo)

        if order_subtotal < promo.min_order_value:
            return DiscountValidation.rejected(
                DiscountRejection.BELOW_MINIMUM_ORDER,
                promo,
                minimum_order=promo.min_order_value,
            )

        if promo.usage_cap_reached:
            return DiscountValidation.rejected(DiscountRejection.USAGE_CAP_REACHED, promo)

        if promo.valid_until is not None and now > promo.valid_until:
            return DiscountValidation.rejected(DiscountRejection.EXPIRED, promo)

        if promo.valid_from is not None and now < promo.valid_from:
            return DiscountValidation.rejected(DiscountRejection.NOT_YET_VALID, promo)

        return DiscountValidation(
            promo_code=promo,
            discount_amount=compute_discount(promo, order_subtotal),
        )
