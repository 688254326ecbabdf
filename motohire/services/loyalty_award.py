"""Loyalty points for completed rentals."""

from typing import Optional
from uuid import UUID

from motohire.logging import get_logger
from motohire.logging.audit import AuditLogger
from motohire.models.loyalty import LoyaltyAccount, LoyaltyAccrual, SourceKind, TransactionType
from motohire.storage.postgres_loyalty_repo import PostgresLoyaltyRepository

logger = get_logger(__name__)

# 10 points for every full 100 KES paid
POINTS_PER_BLOCK = 10
KES_PER_BLOCK = 100


def points_for_total(total: int) -> int:
    """Points earned for a paid total."""
    if total < 0:
        raise ValueError("total must not be negative")
    return (total // KES_PER_BLOCK) * POINTS_PER_BLOCK


class LoyaltyAwardService:
    """Credits riders with points, once per source record."""

    def __init__(self, loyalty_repo: PostgresLoyaltyRepository):
        self.loyalty_repo = loyalty_repo

    async def award(
        self,
        owner_id: UUID,
        points: int,
        reason: str,
        source_id: UUID,
        source_kind: SourceKind = SourceKind.BOOKING,
    ) -> Optional[LoyaltyAccount]:
        """
        Credit points to a rider.

        Args:
            owner_id: Rider receiving the points
            points: Points to credit (zero is skipped)
            reason: Ledger description
            source_id: Record that earned the points
            source_kind: Kind of that record

        Returns:
            Updated account, or None when nothing was written

        Raises:
            DuplicateAward: If the source record already earned points
        """
        if points <= 0:
            logger.info(
                "loyalty_award_skipped",
                owner_id=str(owner_id),
                source_id=str(source_id),
                points=points,
            )
            return None

        accrual = LoyaltyAccrual(
            owner_id=owner_id,
            points=points,
            transaction_type=TransactionType.EARNED,
            description=reason,
            reference_id=source_id,
            reference_type=source_kind,
        )
        account = await self.loyalty_repo.record_award(accrual)

        AuditLogger.log_loyalty_awarded(
            actor_id=owner_id,
            reservation_id=source_id,
            points=points,
        )
        return account

    async def already_awarded(self, source_id: UUID, source_kind: SourceKind = SourceKind.BOOKING) -> bool:
        """Check whether a source record already earned points."""
        return await self.loyalty_repo.has_award(source_kind, source_id)
