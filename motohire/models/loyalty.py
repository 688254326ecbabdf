"""Loyalty domain models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class LoyaltyTier(str, Enum):
    """Rider tier, derived from lifetime points."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


# Lifetime points needed to reach each tier, highest first
TIER_THRESHOLDS: list[tuple[LoyaltyTier, int]] = [
    (LoyaltyTier.PLATINUM, 15000),
    (LoyaltyTier.GOLD, 7500),
    (LoyaltyTier.SILVER, 2500),
    (LoyaltyTier.BRONZE, 0),
]


def tier_for_points(lifetime_points: int) -> LoyaltyTier:
    """Return the tier for a lifetime point balance."""
    for tier, threshold in TIER_THRESHOLDS:
        if lifetime_points >= threshold:
            return tier
    return LoyaltyTier.BRONZE


class TransactionType(str, Enum):
    """Points ledger entry type."""

    EARNED = "earned"
    REDEEMED = "redeemed"


class SourceKind(str, Enum):
    """Kind of record that produced a points entry."""

    BOOKING = "booking"
    REWARD = "reward"


class LoyaltyAccrual(BaseModel):
    """A single points ledger entry."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    points: int
    transaction_type: TransactionType = TransactionType.EARNED
    description: Optional[str] = None
    reference_id: Optional[UUID] = None
    reference_type: Optional[SourceKind] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class LoyaltyAccount(BaseModel):
    """Running points balance for a rider."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    total_points: int = Field(default=0, ge=0)
    lifetime_points: int = Field(default=0, ge=0)
    tier: LoyaltyTier = LoyaltyTier.BRONZE
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
