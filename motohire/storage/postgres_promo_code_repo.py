"""PostgreSQL repository for PromoCode entities."""

from typing import Optional
from uuid import UUID

from sqlalchemy import or_, select, update

from motohire.logging import get_logger
from motohire.models.promo_code import PromoCode, canonicalize_code
from motohire.storage.db_models import PromoCodeTable
from motohire.storage.repository_base import RepositoryBase

logger = get_logger(__name__)


class PostgresPromoCodeRepository(RepositoryBase[PromoCode]):
    """Promo code repository using PostgreSQL."""

    async def get_by_id(self, id: UUID) -> Optional[PromoCode]:
        """Retrieve promo code by ID."""
        stmt = (
            select(PromoCodeTable)
            .where(PromoCodeTable.id == id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        db_promo = result.scalar_one_or_none()

        if not db_promo:
            return None

        return self._to_domain_model(db_promo)

    async def get_by_code(self, code: str) -> Optional[PromoCode]:
        """Look up a promo code, ignoring case and surrounding spaces."""
        stmt = (
            select(PromoCodeTable)
            .where(PromoCodeTable.code == canonicalize_code(code))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        db_promo = result.scalar_one_or_none()

        if not db_promo:
            return None

        return self._to_domain_model(db_promo)

    async def create(self, entity: PromoCode) -> PromoCode:
        """Create new promo code (used by seeding and admin tooling)."""
        db_promo = PromoCodeTable(
            id=entity.id,
            code=entity.code,
            description=entity.description,
            discount_type=entity.discount_type,
            discount_value=entity.discount_value,
            min_order_value=entity.min_order_value,
            max_uses=entity.max_uses,
            current_uses=entity.current_uses,
            valid_from=entity.valid_from,
            valid_until=entity.valid_until,
            active=entity.active,
        )

        self.session.add(db_promo)
        await self._commit()

        logger.info("promo_code_created", promo_code_id=str(db_promo.id), code=entity.code)

        return self._to_domain_model(db_promo)

    async def redeem(self, id: UUID) -> bool:
        """Atomically count one use of a promo code.

        Increments only while the code is active and below its cap.

        Returns:
            True if the use was counted, False if the cap was already reached
        """
        stmt = (
            update(PromoCodeTable)
            .where(PromoCodeTable.id == id)
            .where(PromoCodeTable.active.is_(True))
            .where(
                or_(
                    PromoCodeTable.max_uses.is_(None),
                    PromoCodeTable.current_uses < PromoCodeTable.max_uses,
                )
            )
            .values(current_uses=PromoCodeTable.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self._commit()

        redeemed = result.rowcount == 1
        logger.info("promo_code_redeem_attempted", promo_code_id=str(id), redeemed=redeemed)
        return redeemed

    def _to_domain_model(self, db_promo: PromoCodeTable) -> PromoCode:
        """Convert database model to domain model."""
        return PromoCode(
            id=db_promo.id,
            code=db_promo.code,
            description=db_promo.description,
            discount_type=db_promo.discount_type,
            discount_value=db_promo.discount_value,
            min_order_value=db_promo.min_order_value or 0,
            max_uses=db_promo.max_uses,
            current_uses=db_promo.current_uses or 0,
            valid_from=db_promo.valid_from,
            valid_until=db_promo.valid_until,
            active=bool(db_promo.active),
            created_at=db_promo.created_at,
            updated_at=db_promo.updated_at,
        )
