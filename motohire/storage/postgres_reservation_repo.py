"""PostgreSQL repository for Reservation entities."""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from motohire.logging import get_logger
from motohire.models.errors import InvalidStatusTransition, ReservationNotFound
from motohire.models.reservation import (
    Reservation,
    ReservationAddOn,
    ReservationInput,
    ReservationStatus,
    can_transition,
)
from motohire.storage.db_models import ReservationAddOnTable, ReservationTable
from motohire.storage.repository_base import RepositoryBase

logger = get_logger(__name__)

# Statuses that hold the bike for their date range
HOLDING_STATUSES = (ReservationStatus.PENDING_PAYMENT, ReservationStatus.CONFIRMED)


def _effective_end(start: datetime, end: datetime) -> datetime:
    """A same-day rental still occupies the bike for one day."""
    return max(end, start + timedelta(days=1))


class PostgresReservationRepository(RepositoryBase[Reservation]):
    """Reservation repository using PostgreSQL."""

    async def _get_row(self, id: UUID) -> Optional[ReservationTable]:
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.id == id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        """Retrieve reservation by ID."""
        db_reservation = await self._get_row(id)

        if not db_reservation:
            return None

        return self._to_domain_model(db_reservation)

    async def create(self, entity: ReservationInput) -> Reservation:
        """Create a provisional reservation awaiting payment."""
        db_reservation = ReservationTable(
            owner_id=entity.owner_id,
            asset_id=entity.asset_id,
            asset_name=entity.asset_name,
            start_date=entity.start_date,
            end_date=entity.end_date,
            pickup_location=entity.pickup_location,
            notes=entity.notes,
            base_subtotal=entity.base_subtotal,
            addon_subtotal=entity.addon_subtotal,
            discount_amount=entity.discount_amount,
            total_price=entity.total_price,
            promo_code_id=entity.promo_code_id,
            promo_code=entity.promo_code,
            payer_phone=entity.payer_phone,
            status=ReservationStatus.PENDING_PAYMENT,
            payment_simulated=False,
            add_ons=[
                ReservationAddOnTable(
                    gear_id=add_on.gear_id,
                    name=add_on.name,
                    price_per_day=add_on.price_per_day,
                    quantity=add_on.quantity,
                )
                for add_on in entity.add_ons
            ],
        )

        self.session.add(db_reservation)
        await self._commit()

        logger.info(
            "reservation_created",
            reservation_id=str(db_reservation.id),
            owner_id=str(entity.owner_id),
            asset_id=str(entity.asset_id) if entity.asset_id else None,
            total_price=entity.total_price,
            add_ons=len(entity.add_ons),
        )

        return self._to_domain_model(db_reservation)

    async def update_status(
        self,
        id: UUID,
        status: ReservationStatus,
        reason: Optional[str] = None,
        receipt: Optional[str] = None,
    ) -> Reservation:
        """Move a reservation along an allowed status edge.

        The write is conditional on the status read, so two concurrent
        updates cannot both succeed.
        """
        db_reservation = await self._get_row(id)

        if not db_reservation:
            raise ReservationNotFound(id)

        current = ReservationStatus(db_reservation.status)
        if not can_transition(current, status):
            raise InvalidStatusTransition(id, current.value, status.value)

        now = datetime.utcnow()
        values: dict = {"status": status, "updated_at": now}
        if status == ReservationStatus.CONFIRMED:
            values["confirmed_at"] = now
            if receipt:
                values["payment_receipt"] = receipt
        elif status == ReservationStatus.CANCELLED:
            values["cancelled_at"] = now
            values["cancellation_reason"] = reason

        stmt = (
            update(ReservationTable)
            .where(ReservationTable.id == id)
            .where(ReservationTable.status == current)
            .values(**values)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        await self._commit()

        if result.rowcount == 0:
            latest = await self._get_row(id)
            latest_status = latest.status.value if latest else "missing"
            raise InvalidStatusTransition(id, latest_status, status.value)

        logger.info(
            "reservation_status_updated",
            reservation_id=str(id),
            previous_status=current.value,
            status=status.value,
            reason=reason,
        )

        updated = await self._get_row(id)
        return self._to_domain_model(updated)

    async def attach_payment_reference(
        self, id: UUID, checkout_request_id: Optional[str], simulated: bool = False
    ) -> Reservation:
        """Record the provider checkout request ID for a pending reservation."""
        db_reservation = await self._get_row(id)

        if not db_reservation:
            raise ReservationNotFound(id)

        db_reservation.payment_reference = checkout_request_id
        db_reservation.payment_simulated = simulated
        await self._commit()

        logger.info(
            "reservation_payment_attached",
            reservation_id=str(id),
            checkout_request_id=checkout_request_id,
            simulated=simulated,
        )

        return self._to_domain_model(db_reservation)

    async def get_by_payment_reference(self, checkout_request_id: str) -> Optional[Reservation]:
        """Find the reservation a provider callback refers to."""
        stmt = select(ReservationTable).where(
            ReservationTable.payment_reference == checkout_request_id
        )
        result = await self.session.execute(stmt)
        db_reservation = result.scalar_one_or_none()

        if not db_reservation:
            return None

        return self._to_domain_model(db_reservation)

    async def get_by_owner(self, owner_id: UUID, limit: int = 50) -> list[Reservation]:
        """Get reservations for a rider, newest first."""
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.owner_id == owner_id)
            .order_by(ReservationTable.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        db_reservations = result.scalars().all()

        return [self._to_domain_model(db_res) for db_res in db_reservations]

    async def find_overlapping(
        self,
        asset_id: UUID,
        start_date: datetime,
        end_date: datetime,
    ) -> list[Reservation]:
        """Get reservations holding the bike for any day of the range."""
        new_end = _effective_end(start_date, end_date)
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.asset_id == asset_id)
            .where(ReservationTable.status.in_(HOLDING_STATUSES))
            .where(ReservationTable.start_date < new_end)
            .where(ReservationTable.end_date >= start_date - timedelta(days=1))
        )
        result = await self.session.execute(stmt)
        candidates = result.scalars().all()

        return [
            self._to_domain_model(db_res)
            for db_res in candidates
            if _effective_end(db_res.start_date, db_res.end_date) > start_date
        ]

    async def get_stale_pending(self, older_than: datetime, limit: int = 100) -> list[Reservation]:
        """Get reservations still awaiting payment since before a cutoff."""
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.status == ReservationStatus.PENDING_PAYMENT)
            .where(ReservationTable.created_at < older_than)
            .order_by(ReservationTable.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        db_reservations = result.scalars().all()

        return [self._to_domain_model(db_res) for db_res in db_reservations]

    def _to_domain_model(self, db_reservation: ReservationTable) -> Reservation:
        """Convert database model to domain model."""
        return Reservation(
            id=db_reservation.id,
            owner_id=db_reservation.owner_id,
            asset_id=db_reservation.asset_id,
            asset_name=db_reservation.asset_name,
            start_date=db_reservation.start_date,
            end_date=db_reservation.end_date,
            pickup_location=db_reservation.pickup_location,
            notes=db_reservation.notes,
            add_ons=[
                ReservationAddOn(
                    gear_id=add_on.gear_id,
                    name=add_on.name,
                    price_per_day=add_on.price_per_day,
                    quantity=add_on.quantity,
                )
                for add_on in db_reservation.add_ons
            ],
            base_subtotal=db_reservation.base_subtotal,
            addon_subtotal=db_reservation.addon_subtotal,
            discount_amount=db_reservation.discount_amount,
            total_price=db_reservation.total_price,
            promo_code_id=db_reservation.promo_code_id,
            promo_code=db_reservation.promo_code,
            status=db_reservation.status,
            payer_phone=db_reservation.payer_phone,
            payment_reference=db_reservation.payment_reference,
            payment_receipt=db_reservation.payment_receipt,
            payment_simulated=db_reservation.payment_simulated,
            cancellation_reason=db_reservation.cancellation_reason,
            cancelled_at=db_reservation.cancelled_at,
            confirmed_at=db_reservation.confirmed_at,
            created_at=db_reservation.created_at,
            updated_at=db_reservation.updated_at,
        )
