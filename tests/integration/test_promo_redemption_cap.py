"""Integration tests for promo code redemption.

Redemption is a single conditional UPDATE that only counts a use while
the code is active and below its cap.
"""

import pytest

from motohire.models.promo_code import DiscountType, PromoCode
from motohire.storage.postgres_promo_code_repo import PostgresPromoCodeRepository


@pytest.mark.asyncio
async def test_lookup_ignores_case(session):
    repo = PostgresPromoCodeRepository(session)
    created = await repo.create(
        PromoCode(code="save10", discount_type=DiscountType.PERCENTAGE, discount_value=10)
    )

    found = await repo.get_by_code("  Save10 ")

    assert found.id == created.id
    assert found.code == "SAVE10"


@pytest.mark.asyncio
async def test_redeem_stops_at_cap(session):
    repo = PostgresPromoCodeRepository(session)
    promo = await repo.create(
        PromoCode(code="LAST2", discount_type=DiscountType.FIXED_AMOUNT, discount_value=500, max_uses=2)
    )

    results = [await repo.redeem(promo.id) for _ in range(3)]

    assert results == [True, True, False]
    assert (await repo.get_by_id(promo.id)).current_uses == 2


@pytest.mark.asyncio
async def test_unlimited_code_always_redeems(session):
    repo = PostgresPromoCodeRepository(session)
    promo = await repo.create(
        PromoCode(code="OPEN", discount_type=DiscountType.PERCENTAGE, discount_value=5)
    )

    assert all([await repo.redeem(promo.id) for _ in range(4)])


@pytest.mark.asyncio
async def test_inactive_code_not_redeemed(session):
    repo = PostgresPromoCodeRepository(session)
    promo = await repo.create(
        PromoCode(code="OFF", discount_type=DiscountType.PERCENTAGE, discount_value=5, active=False)
    )

    assert await repo.redeem(promo.id) is False
