"""Rental price calculation.

All amounts are whole Kenyan shillings; there are no minor units.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from motohire.models.promo_code import DiscountType, PromoCode
from motohire.models.reservation import ReservationAddOn

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class PriceBreakdown:
    """Line items for one rental."""

    billed_days: int
    base_subtotal: int
    addon_subtotal: int
    discount_amount: int
    total: int

    @property
    def order_subtotal(self) -> int:
        """Amount before discount."""
        return self.base_subtotal + self.addon_subtotal


def days_between(end_date: datetime, start_date: datetime) -> int:
    """Whole days from start to end, truncated toward zero."""
    seconds = (end_date - start_date).total_seconds()
    return int(seconds / SECONDS_PER_DAY)


def billed_days(start_date: datetime, end_date: datetime) -> int:
    """Days charged for a rental, never fewer than one.

    Inverted ranges are also clamped to one day here; callers must reject
    them before pricing.
    """
    return max(1, days_between(end_date, start_date))


def compute_discount(promo: PromoCode, order_subtotal: int) -> int:
    """Discount a promo code gives on an order, capped at the order value."""
    if order_subtotal <= 0:
        return 0

    if promo.discount_type == DiscountType.PERCENTAGE:
        raw = Decimal(order_subtotal) * Decimal(promo.discount_value) / Decimal(100)
        discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        discount = promo.discount_value

    return min(discount, order_subtotal)


def compute_total(
    start_date: datetime,
    end_date: datetime,
    unit_rate: int,
    add_ons: Iterable[ReservationAddOn] = (),
    discount: Optional[PromoCode] = None,
) -> PriceBreakdown:
    """
    Price a rental.

    Args:
        start_date: Pickup date
        end_date: Return date
        unit_rate: Bike day rate
        add_ons: Selected safety gear, one unit each
        discount: Already-validated promo code, if any

    Returns:
        PriceBreakdown with the final payable total
    """
    if unit_rate < 0:
        raise ValueError("unit_rate must not be negative")

    days = billed_days(start_date, end_date)
    base_subtotal = unit_rate * days
    addon_subtotal = sum(add_on.price_per_day * days for add_on in add_ons)
    order_subtotal = base_subtotal + addon_subtotal

    discount_amount = compute_discount(discount, order_subtotal) if discount else 0
    total = max(0, order_subtotal - discount_amount)

    return PriceBreakdown(
        billed_days=days,
        base_subtotal=base_subtotal,
        addon_subtotal=addon_subtotal,
        discount_amount=discount_amount,
        total=total,
    )
