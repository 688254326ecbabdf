"""PostgreSQL repository for loyalty points."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from motohire.logging import get_logger
from motohire.models.errors import DuplicateAward
from motohire.models.loyalty import (
    LoyaltyAccount,
    LoyaltyAccrual,
    SourceKind,
    TransactionType,
    tier_for_points,
)
from motohire.storage.db_models import LoyaltyAccountTable, PointsTransactionTable

logger = get_logger(__name__)


class PostgresLoyaltyRepository:
    """Loyalty ledger and balance repository using PostgreSQL."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    async def get_account(self, owner_id: UUID) -> Optional[LoyaltyAccount]:
        """Get a rider's balance."""
        db_account = await self._get_account_row(owner_id)

        if not db_account:
            return None

        return self._account_to_domain(db_account)

    async def get_transactions(self, owner_id: UUID, limit: int = 50) -> list[LoyaltyAccrual]:
        """Get a rider's points history, newest first."""
        stmt = (
            select(PointsTransactionTable)
            .where(PointsTransactionTable.owner_id == owner_id)
            .order_by(PointsTransactionTable.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._accrual_to_domain(row) for row in result.scalars().all()]

    async def has_award(self, source_kind: SourceKind, source_id: UUID) -> bool:
        """Check whether points were already earned for a source record."""
        stmt = (
            select(PointsTransactionTable.id)
            .where(PointsTransactionTable.reference_type == source_kind)
            .where(PointsTransactionTable.reference_id == source_id)
            .where(PointsTransactionTable.transaction_type == TransactionType.EARNED)
        )
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def record_award(self, accrual: LoyaltyAccrual) -> LoyaltyAccount:
        """
        Write a points entry and credit the rider's balance.

        Both writes commit together.

        Raises:
            DuplicateAward: If the source record already earned points
        """
        db_transaction = PointsTransactionTable(
            id=accrual.id,
            owner_id=accrual.owner_id,
            points=accrual.points,
            transaction_type=accrual.transaction_type,
            description=accrual.description,
            reference_id=accrual.reference_id,
            reference_type=accrual.reference_type,
        )

        try:
            self.session.add(db_transaction)
            await self.session.flush()

            db_account = await self._get_account_row(accrual.owner_id)
            if db_account is None:
                db_account = LoyaltyAccountTable(
                    owner_id=accrual.owner_id,
                    total_points=0,
                    lifetime_points=0,
                )
                self.session.add(db_account)

            db_account.total_points = (db_account.total_points or 0) + accrual.points
            db_account.lifetime_points = (db_account.lifetime_points or 0) + accrual.points
            db_account.tier = tier_for_points(db_account.lifetime_points)
            db_account.updated_at = datetime.utcnow()

            await self.session.flush()
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if accrual.reference_type is not None and accrual.reference_id is not None:
                raise DuplicateAward(accrual.reference_type.value, accrual.reference_id) from e
            raise

        logger.info(
            "loyalty_points_recorded",
            owner_id=str(accrual.owner_id),
            points=accrual.points,
            reference_id=str(accrual.reference_id) if accrual.reference_id else None,
            total_points=db_account.total_points,
            tier=db_account.tier.value,
        )

        return self._account_to_domain(db_account)

    async def _get_account_row(self, owner_id: UUID) -> Optional[LoyaltyAccountTable]:
        stmt = (
            select(LoyaltyAccountTable)
            .where(LoyaltyAccountTable.owner_id == owner_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _account_to_domain(self, db_account: LoyaltyAccountTable) -> LoyaltyAccount:
        """Convert database model to domain model."""
        return LoyaltyAccount(
            id=db_account.id,
            owner_id=db_account.owner_id,
            total_points=db_account.total_points,
            lifetime_points=db_account.lifetime_points,
            tier=db_account.tier,
            created_at=db_account.created_at,
            updated_at=db_account.updated_at,
        )

    def _accrual_to_domain(self, row: PointsTransactionTable) -> LoyaltyAccrual:
        """Convert database model to domain model."""
        return LoyaltyAccrual(
            id=row.id,
            owner_id=row.owner_id,
            points=row.points,
            transaction_type=row.transaction_type,
            description=row.description,
            reference_id=row.reference_id,
            reference_type=row.reference_type,
            created_at=row.created_at,
        )
