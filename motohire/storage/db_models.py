"""SQLAlchemy database models.

Maps domain models to PostgreSQL tables.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from motohire.models.loyalty import LoyaltyTier, SourceKind, TransactionType
from motohire.models.promo_code import DiscountType
from motohire.models.reservation import ReservationStatus


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ReservationTable(Base):
    """Bike rental reservation table."""

    __tablename__ = "reservations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    asset_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    asset_name = Column(String(200), nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    pickup_location = Column(String(200), nullable=False)
    notes = Column(Text, nullable=True)
    base_subtotal = Column(Integer, nullable=False)
    addon_subtotal = Column(Integer, nullable=False, default=0)
    discount_amount = Column(Integer, nullable=False, default=0)
    total_price = Column(Integer, nullable=False)
    promo_code_id = Column(
        Uuid(as_uuid=True), ForeignKey("promo_codes.id", ondelete="SET NULL"), nullable=True
    )
    promo_code = Column(String(50), nullable=True)
    status = Column(
        Enum(
            ReservationStatus,
            native_enum=True,
            name="reservationstatus",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ReservationStatus.PENDING_PAYMENT,
        index=True,
    )
    payer_phone = Column(String(20), nullable=True)
    payment_reference = Column(String(100), nullable=True, unique=True)
    payment_receipt = Column(String(50), nullable=True)
    payment_simulated = Column(Boolean, nullable=False, default=False)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    add_ons = relationship(
        "ReservationAddOnTable",
        back_populates="reservation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="check_date_range"),
        CheckConstraint("base_subtotal >= 0", name="check_nonnegative_base"),
        CheckConstraint("addon_subtotal >= 0", name="check_nonnegative_addons"),
        CheckConstraint("discount_amount >= 0", name="check_nonnegative_discount"),
        CheckConstraint("total_price >= 0", name="check_nonnegative_total"),
        CheckConstraint(
            "asset_id IS NOT NULL OR asset_name IS NOT NULL", name="check_asset_reference"
        ),
        Index("ix_reservations_owner_created", owner_id, created_at.desc()),
        Index("ix_reservations_asset_dates", asset_id, start_date, end_date),
        Index("ix_reservations_status_created", status, created_at),
    )


class ReservationAddOnTable(Base):
    """Safety gear attached to a reservation."""

    __tablename__ = "reservation_add_ons"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    reservation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    gear_id = Column(Uuid(as_uuid=True), nullable=False)
    name = Column(String(100), nullable=False)
    price_per_day = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    reservation = relationship("ReservationTable", back_populates="add_ons")

    __table_args__ = (
        CheckConstraint("price_per_day >= 0", name="check_nonnegative_gear_price"),
        CheckConstraint("quantity > 0", name="check_positive_gear_quantity"),
        UniqueConstraint("reservation_id", "gear_id", name="uq_reservation_gear"),
    )


class PromoCodeTable(Base):
    """Promo code table."""

    __tablename__ = "promo_codes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    discount_type = Column(
        Enum(
            DiscountType,
            native_enum=True,
            name="discounttype",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    discount_value = Column(Integer, nullable=False)
    min_order_value = Column(Integer, nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("discount_value > 0", name="check_positive_discount"),
        CheckConstraint("min_order_value >= 0", name="check_nonnegative_min_order"),
        CheckConstraint("current_uses >= 0", name="check_nonnegative_uses"),
        CheckConstraint(
            "max_uses IS NULL OR current_uses <= max_uses", name="check_uses_within_cap"
        ),
    )


class LoyaltyAccountTable(Base):
    """Per-rider loyalty balance."""

    __tablename__ = "loyalty_points"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, unique=True, index=True)
    total_points = Column(Integer, nullable=False, default=0)
    lifetime_points = Column(Integer, nullable=False, default=0)
    tier = Column(
        Enum(
            LoyaltyTier,
            native_enum=True,
            name="loyaltytier",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=LoyaltyTier.BRONZE,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("total_points >= 0", name="check_nonnegative_points"),
        CheckConstraint("lifetime_points >= 0", name="check_nonnegative_lifetime"),
    )


class PointsTransactionTable(Base):
    """Points ledger."""

    __tablename__ = "points_transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    transaction_type = Column(
        Enum(
            TransactionType,
            native_enum=True,
            name="pointstransactiontype",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    description = Column(Text, nullable=True)
    reference_id = Column(Uuid(as_uuid=True), nullable=True)
    reference_type = Column(
        Enum(
            SourceKind,
            native_enum=True,
            name="pointssourcekind",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        UniqueConstraint(
            "reference_type",
            "reference_id",
            "transaction_type",
            name="uq_points_transaction_source",
        ),
        Index("ix_points_transactions_owner_created", owner_id, created_at.desc()),
    )
