"""Settlement orchestration service.

Drives one booking from form submission to a paid, confirmed reservation:
price -> discount check -> bike hold -> provisional reservation ->
payment prompt -> confirmation -> promo redemption -> loyalty points.

Every step is awaited in order. Promo redemption and loyalty points are
best-effort; a failed confirmation after money has moved is escalated.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Optional
from uuid import UUID

from motohire.config.settings import Settings
from motohire.logging import get_logger
from motohire.logging.audit import AuditLogger
from motohire.models.errors import (
    DuplicateAward,
    InvalidStatusTransition,
    ReservationNotFound,
    SettlementEscalation,
)
from motohire.models.payment import (
    PaymentAttempt,
    PaymentAttemptStatus,
    PaymentOutcome,
    PushAccepted,
    RejectionKind,
)
from motohire.models.reservation import (
    TEXT_FIELD_MAX_LENGTH,
    Reservation,
    ReservationInput,
    ReservationStatus,
)
from motohire.models.settlement import (
    AwaitingPayment,
    CollectingDetails,
    Failed,
    Settled,
    SettlementFlow,
    SettlementIntent,
    SettlementState,
    state_name,
)
from motohire.services.discount_validation import DiscountValidation, DiscountValidator
from motohire.services.loyalty_award import LoyaltyAwardService, points_for_total
from motohire.services.mpesa_gateway import MpesaGateway, normalize_msisdn
from motohire.services.pricing import PriceBreakdown, compute_total
from motohire.storage.postgres_promo_code_repo import PostgresPromoCodeRepository
from motohire.storage.postgres_reservation_repo import PostgresReservationRepository
from motohire.storage.redis_locks import RedisLockHelper

logger = get_logger(__name__)

CANCEL_REASON_PAYMENT_FAILED = "payment_failed"
CANCEL_REASON_PAYMENT_CANCELLED = "payment_cancelled"
CANCEL_REASON_USER = "user_cancelled"
CANCEL_REASON_AMOUNT_MISMATCH = "payment_amount_mismatch"

PUSH_DESCRIPTION = "Moto rental"


class SettlementErrorCode(str, Enum):
    """Failure codes surfaced to booking handlers."""

    MISSING_ASSET = "missing_asset"
    MISSING_DATES = "missing_dates"
    INVALID_DATE_RANGE = "invalid_date_range"
    MISSING_PICKUP_LOCATION = "missing_pickup_location"
    PICKUP_LOCATION_TOO_LONG = "pickup_location_too_long"
    ASSET_NAME_TOO_LONG = "asset_name_too_long"
    MISSING_PHONE = "missing_phone"
    INVALID_PHONE = "invalid_phone"
    ASSET_UNAVAILABLE = "asset_unavailable"
    ASSET_BUSY = "asset_busy"
    RESERVATION_FAILED = "reservation_failed"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_UNAVAILABLE = "payment_unavailable"
    PAYMENT_CANCELLED = "payment_cancelled"
    RESERVATION_NOT_FOUND = "reservation_not_found"
    NOT_CANCELLABLE = "not_cancellable"
    PERMISSION_DENIED = "permission_denied"


class SettlementResult:
    """Result of a settlement operation."""

    def __init__(
        self,
        success: bool,
        state: Optional[SettlementState] = None,
        reservation: Optional[Reservation] = None,
        error_code: Optional[SettlementErrorCode] = None,
        error: Optional[str] = None,
        field_errors: Optional[list[SettlementErrorCode]] = None,
        provider_message: Optional[str] = None,
        price: Optional[PriceBreakdown] = None,
        discount: Optional[DiscountValidation] = None,
    ):
        self.success = success
        self.state = state
        self.reservation = reservation
        self.error_code = error_code
        self.error = error
        self.field_errors = field_errors or []
        self.provider_message = provider_message
        self.price = price
        self.discount = discount

    @property
    def reservation_id(self) -> Optional[UUID]:
        return self.reservation.id if self.reservation else None

    @property
    def state_name(self) -> Optional[str]:
        return state_name(self.state) if self.state is not None else None

    @property
    def discount_rejected(self) -> bool:
        """A promo code was supplied but not applied."""
        return self.discount is not None and not self.discount.ok


class SettlementOrchestrator:
    """Coordinates reservation, payment and reward side effects."""

    def __init__(
        self,
        reservation_repo: PostgresReservationRepository,
        promo_repo: PostgresPromoCodeRepository,
        gateway: MpesaGateway,
        loyalty_service: LoyaltyAwardService,
        lock_helper: Optional[RedisLockHelper] = None,
        confirm_retry_attempts: int = 3,
        confirm_retry_backoff_seconds: float = 0.5,
        max_finished_flows: int = 1000,
        flow_ttl_seconds: int = 3600,
    ):
        """
        Initialize settlement orchestrator.

        Args:
            reservation_repo: Reservation repository
            promo_repo: Promo code repository (validation and redemption)
            gateway: M-Pesa push gateway
            loyalty_service: Loyalty award service
            lock_helper: Redis lock helper guarding each bike (optional)
            confirm_retry_attempts: Tries for the confirmation write
            confirm_retry_backoff_seconds: Base delay between tries
            max_finished_flows: Flows no longer awaiting payment kept for get_state
            flow_ttl_seconds: Age after which an unresolved flow is forgotten
        """
        self.reservation_repo = reservation_repo
        self.promo_repo = promo_repo
        self.discount_validator = DiscountValidator(promo_repo)
        self.gateway = gateway
        self.loyalty_service = loyalty_service
        self.lock_helper = lock_helper
        self.confirm_retry_attempts = max(1, confirm_retry_attempts)
        self.confirm_retry_backoff_seconds = confirm_retry_backoff_seconds
        self.max_finished_flows = max(0, max_finished_flows)
        self.flow_ttl = timedelta(seconds=flow_ttl_seconds)

        self._flows: dict[UUID, SettlementFlow] = {}
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._lock_users: dict[UUID, int] = {}
        self._background_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        reservation_repo: PostgresReservationRepository,
        promo_repo: PostgresPromoCodeRepository,
        gateway: MpesaGateway,
        loyalty_service: LoyaltyAwardService,
        lock_helper: Optional[RedisLockHelper] = None,
    ) -> "SettlementOrchestrator":
        """Build an orchestrator using the configured retry policy."""
        return cls(
            reservation_repo=reservation_repo,
            promo_repo=promo_repo,
            gateway=gateway,
            loyalty_service=loyalty_service,
            lock_helper=lock_helper,
            confirm_retry_attempts=settings.confirm_retry_attempts,
            confirm_retry_backoff_seconds=settings.confirm_retry_backoff_seconds,
            max_finished_flows=settings.settlement_max_finished_flows,
            flow_ttl_seconds=settings.settlement_flow_ttl_seconds,
        )

    @asynccontextmanager
    async def _serialized(self, reservation_id: UUID) -> AsyncIterator[None]:
        """Run one transition at a time per reservation.

        The lock entry is dropped once no caller holds or waits on it.
        """
        lock = self._locks.get(reservation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[reservation_id] = lock
        self._lock_users[reservation_id] = self._lock_users.get(reservation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[reservation_id] - 1
            if remaining:
                self._lock_users[reservation_id] = remaining
            else:
                del self._lock_users[reservation_id]
                del self._locks[reservation_id]
            self._prune_flows()

    def _track_flow(self, reservation_id: UUID, flow: SettlementFlow) -> None:
        self._flows[reservation_id] = flow
        self._prune_flows()

    def _prune_flows(self, now: Optional[datetime] = None) -> None:
        """Forget the oldest finished flows and stale unresolved ones."""
        now = now or datetime.utcnow()
        finished: list[UUID] = []
        for reservation_id, flow in list(self._flows.items()):
            state = flow.state
            if isinstance(state, AwaitingPayment):
                # Resolved by another process or the reconciliation worker
                if now - state.attempt.started_at > self.flow_ttl:
                    del self._flows[reservation_id]
            else:
                finished.append(reservation_id)

        excess = len(finished) - self.max_finished_flows
        for reservation_id in finished[: max(0, excess)]:
            del self._flows[reservation_id]

    def get_state(self, reservation_id: UUID) -> Optional[SettlementState]:
        """In-process flow state for a reservation, if this process owns it."""
        flow = self._flows.get(reservation_id)
        return flow.state if flow else None

    def get_flow(self, reservation_id: UUID) -> Optional[SettlementFlow]:
        return self._flows.get(reservation_id)

    async def get_reservation(self, reservation_id: UUID) -> Optional[Reservation]:
        """Load a reservation."""
        return await self.reservation_repo.get_by_id(reservation_id)

    async def list_reservations(self, owner_id: UUID, limit: int = 50) -> list[Reservation]:
        """Rider's reservations, newest first."""
        return await self.reservation_repo.get_by_owner(owner_id, limit=limit)

    async def resolve_checkout_request(self, checkout_request_id: str) -> Optional[UUID]:
        """Find the reservation a provider checkout request belongs to."""
        reservation = await self.reservation_repo.get_by_payment_reference(checkout_request_id)
        if reservation:
            return reservation.id

        # Reference write may have failed after the prompt was sent
        for reservation_id, flow in self._flows.items():
            state = flow.state
            if (
                isinstance(state, AwaitingPayment)
                and state.attempt.checkout_request_id == checkout_request_id
            ):
                return reservation_id
        return None

    @staticmethod
    def validate_intent(intent: SettlementIntent) -> list[SettlementErrorCode]:
        """Field errors for a booking form, in display order."""
        errors: list[SettlementErrorCode] = []

        if intent.asset_id is None and not (intent.asset_name or "").strip():
            errors.append(SettlementErrorCode.MISSING_ASSET)
        elif len(intent.asset_name or "") > TEXT_FIELD_MAX_LENGTH:
            errors.append(SettlementErrorCode.ASSET_NAME_TOO_LONG)

        if intent.start_date is None or intent.end_date is None:
            errors.append(SettlementErrorCode.MISSING_DATES)
        elif intent.end_date < intent.start_date:
            errors.append(SettlementErrorCode.INVALID_DATE_RANGE)

        if not intent.pickup_location.strip():
            errors.append(SettlementErrorCode.MISSING_PICKUP_LOCATION)
        elif len(intent.pickup_location.strip()) > TEXT_FIELD_MAX_LENGTH:
            errors.append(SettlementErrorCode.PICKUP_LOCATION_TOO_LONG)

        if not intent.payer_phone.strip():
            errors.append(SettlementErrorCode.MISSING_PHONE)
        elif normalize_msisdn(intent.payer_phone) is None:
            errors.append(SettlementErrorCode.INVALID_PHONE)

        return errors

    async def start_settlement(
        self,
        intent: SettlementIntent,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        """
        Create a provisional reservation and request payment for it.

        Args:
            intent: Booking form submission
            now: Evaluation instant for promo validity (defaults to now)

        Returns:
            SettlementResult; on success the state is AwaitingPayment (or
            Settled for a fully discounted rental)
        """
        flow = SettlementFlow(intent.owner_id)

        field_errors = self.validate_intent(intent)
        if field_errors:
            return SettlementResult(
                success=False,
                state=CollectingDetails(last_error=field_errors[0].value),
                error_code=field_errors[0],
                field_errors=field_errors,
            )

        logger.info(
            "settlement_started",
            owner_id=str(intent.owner_id),
            asset_id=str(intent.asset_id) if intent.asset_id else None,
            promo_code=intent.promo_code,
        )

        price = compute_total(
            intent.start_date, intent.end_date, intent.unit_rate, intent.add_ons
        )

        discount: Optional[DiscountValidation] = None
        if intent.promo_code and intent.promo_code.strip():
            discount = await self.discount_validator.validate(
                intent.promo_code, price.order_subtotal, now=now
            )
            if discount.ok:
                price = compute_total(
                    intent.start_date,
                    intent.end_date,
                    intent.unit_rate,
                    intent.add_ons,
                    discount=discount.promo_code,
                )

        if self.lock_helper is not None and intent.asset_id is not None:
            async with self.lock_helper.acquire_asset_lock(intent.asset_id) as acquired:
                if not acquired:
                    logger.info("settlement_asset_busy", asset_id=str(intent.asset_id))
                    return SettlementResult(
                        success=False,
                        state=flow.state,
                        error_code=SettlementErrorCode.ASSET_BUSY,
                        price=price,
                        discount=discount,
                    )
                reservation, error_code = await self._check_and_create(intent, price, discount)
        else:
            reservation, error_code = await self._check_and_create(intent, price, discount)

        if reservation is None:
            return SettlementResult(
                success=False,
                state=CollectingDetails(last_error=error_code.value),
                error_code=error_code,
                price=price,
                discount=discount,
            )

        AuditLogger.log_reservation_created(
            actor_id=intent.owner_id,
            reservation_id=reservation.id,
            total_price=reservation.total_price,
            promo_code=reservation.promo_code,
        )

        attempt = PaymentAttempt(
            reference=reservation.id,
            amount=reservation.total_price,
            payer_phone=intent.payer_phone,
            status=PaymentAttemptStatus.REQUESTING,
        )
        flow.submit(reservation.id, attempt)
        self._track_flow(reservation.id, flow)

        if reservation.total_price == 0:
            # Nothing to collect
            result = await self.on_payment_settled(reservation.id)
            result.price = price
            result.discount = discount
            return result

        return await self._request_payment(flow, reservation, price, discount)

    async def _check_and_create(
        self,
        intent: SettlementIntent,
        price: PriceBreakdown,
        discount: Optional[DiscountValidation],
    ) -> tuple[Optional[Reservation], Optional[SettlementErrorCode]]:
        """Overlap check and provisional write; callers hold the bike lock."""
        try:
            if intent.asset_id is not None:
                overlapping = await self.reservation_repo.find_overlapping(
                    intent.asset_id, intent.start_date, intent.end_date
                )
                if overlapping:
                    logger.info(
                        "settlement_asset_unavailable",
                        asset_id=str(intent.asset_id),
                        conflicts=[str(r.id) for r in overlapping],
                    )
                    return None, SettlementErrorCode.ASSET_UNAVAILABLE

            applied = discount if discount is not None and discount.ok else None
            reservation = await self.reservation_repo.create(
                ReservationInput(
                    owner_id=intent.owner_id,
                    asset_id=intent.asset_id,
                    asset_name=intent.asset_name,
                    start_date=intent.start_date,
                    end_date=intent.end_date,
                    pickup_location=intent.pickup_location.strip(),
                    notes=intent.notes,
                    add_ons=intent.add_ons,
                    base_subtotal=price.base_subtotal,
                    addon_subtotal=price.addon_subtotal,
                    discount_amount=price.discount_amount,
                    total_price=price.total,
                    promo_code_id=applied.promo_code.id if applied else None,
                    promo_code=applied.promo_code.code if applied else None,
                    payer_phone=normalize_msisdn(intent.payer_phone),
                )
            )
        except Exception as e:
            logger.error(
                "settlement_reservation_failed",
                owner_id=str(intent.owner_id),
                asset_id=str(intent.asset_id) if intent.asset_id else None,
                error=str(e),
                exc_info=True,
            )
            return None, SettlementErrorCode.RESERVATION_FAILED

        return reservation, None

    async def _request_payment(
        self,
        flow: SettlementFlow,
        reservation: Reservation,
        price: PriceBreakdown,
        discount: Optional[DiscountValidation],
    ) -> SettlementResult:
        """Send the payment prompt for a freshly created reservation."""
        push = await self.gateway.request_push(
            payer_phone=flow.state.attempt.payer_phone,
            amount=reservation.total_price,
            reference=reservation.id,
            description=PUSH_DESCRIPTION,
        )

        if isinstance(push, PushAccepted):
            flow.update_attempt(
                PaymentAttemptStatus.AWAITING_CONFIRMATION,
                checkout_request_id=push.checkout_request_id,
                simulated=push.simulated,
                provider_message=push.provider_message,
            )

            try:
                reservation = await self.reservation_repo.attach_payment_reference(
                    reservation.id, push.checkout_request_id, simulated=push.simulated
                )
            except Exception as e:
                logger.error(
                    "settlement_payment_reference_failed",
                    reservation_id=str(reservation.id),
                    checkout_request_id=push.checkout_request_id,
                    error=str(e),
                    exc_info=True,
                )

            AuditLogger.log_payment_requested(
                actor_id=reservation.owner_id,
                reservation_id=reservation.id,
                amount=reservation.total_price,
                checkout_request_id=push.checkout_request_id,
                simulated=push.simulated,
            )

            if push.simulated:
                self._schedule_simulated_settlement(reservation.id)

            return SettlementResult(
                success=True,
                state=flow.state,
                reservation=reservation,
                provider_message=push.provider_message,
                price=price,
                discount=discount,
            )

        # Rejected: no prompt reached the payer
        error_code = (
            SettlementErrorCode.PAYMENT_UNAVAILABLE
            if push.kind == RejectionKind.CONFIGURATION
            else SettlementErrorCode.PAYMENT_FAILED
        )
        flow.update_attempt(PaymentAttemptStatus.REJECTED, failure_reason=push.reason)
        flow.fail(push.reason)

        AuditLogger.log_payment_rejected(
            actor_id=reservation.owner_id,
            reservation_id=reservation.id,
            reason=push.reason,
        )
        cancelled = await self._cancel_best_effort(
            reservation.id, CANCEL_REASON_PAYMENT_FAILED, actor_id=reservation.owner_id
        )

        return SettlementResult(
            success=False,
            state=flow.state,
            reservation=cancelled or reservation,
            error_code=error_code,
            error=push.reason,
            price=price,
            discount=discount,
        )

    def _schedule_simulated_settlement(self, reservation_id: UUID) -> None:
        task = asyncio.create_task(self._settle_simulated(reservation_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _settle_simulated(self, reservation_id: UUID) -> None:
        """Stand in for the provider callback when simulation is enabled."""
        await asyncio.sleep(self.gateway.config.simulation_delay_seconds)
        logger.warning("settlement_simulated_payment", reservation_id=str(reservation_id))
        try:
            await self.on_payment_settled(reservation_id, receipt=None)
        except SettlementEscalation as e:
            logger.error(
                "settlement_simulated_escalation",
                reservation_id=str(reservation_id),
                error=str(e),
            )
        except Exception as e:
            # Nothing awaits this task; reconciliation picks the reservation up
            logger.error(
                "settlement_simulated_failed",
                reservation_id=str(reservation_id),
                error=str(e),
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for scheduled background settlements to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))

    async def cancel_settlement(
        self,
        reservation_id: UUID,
        owner_id: Optional[UUID] = None,
    ) -> SettlementResult:
        """
        Cancel a reservation that is still awaiting payment.

        The status write is best-effort; the flow always returns to
        CollectingDetails.
        """
        async with self._serialized(reservation_id):
            reservation = await self.reservation_repo.get_by_id(reservation_id)
            if reservation is None:
                return SettlementResult(
                    success=False, error_code=SettlementErrorCode.RESERVATION_NOT_FOUND
                )

            if owner_id is not None and reservation.owner_id != owner_id:
                AuditLogger.log_permission_denied(
                    actor_id=owner_id,
                    resource_type="reservation",
                    resource_id=reservation_id,
                    attempted_action="cancel",
                )
                return SettlementResult(
                    success=False, error_code=SettlementErrorCode.PERMISSION_DENIED
                )

            if not reservation.is_cancellable:
                return SettlementResult(
                    success=False,
                    state=self.get_state(reservation_id),
                    reservation=reservation,
                    error_code=SettlementErrorCode.NOT_CANCELLABLE,
                )

            cancelled = await self._cancel_best_effort(
                reservation_id, CANCEL_REASON_USER, actor_id=owner_id or reservation.owner_id
            )

            flow = self._flows.get(reservation_id)
            if flow is not None and isinstance(flow.state, AwaitingPayment):
                flow.cancel("Reservation cancelled")
            state = flow.state if flow else CollectingDetails(last_error="Reservation cancelled")

            return SettlementResult(
                success=True,
                state=state,
                reservation=cancelled or reservation,
            )

    async def _cancel_best_effort(
        self,
        reservation_id: UUID,
        reason: str,
        actor_id: UUID | str = "system",
    ) -> Optional[Reservation]:
        """Cancel a pending reservation; failures are logged, not raised."""
        try:
            cancelled = await self.reservation_repo.update_status(
                reservation_id, ReservationStatus.CANCELLED, reason=reason
            )
        except Exception as e:
            logger.error(
                "settlement_cancel_failed",
                reservation_id=str(reservation_id),
                reason=reason,
                error=str(e),
                exc_info=True,
            )
            return None

        AuditLogger.log_reservation_cancelled(
            actor_id=actor_id,
            reservation_id=reservation_id,
            reason=reason,
        )
        return cancelled

    async def on_payment_settled(
        self,
        reservation_id: UUID,
        receipt: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> SettlementResult:
        """
        Confirm a paid reservation, then redeem its promo and award points.

        Repeat calls for an already confirmed reservation do nothing. A
        reported amount that differs from the reservation total is never
        confirmed: the reservation is cancelled and the payment escalated.

        Raises:
            ReservationNotFound: If the reservation does not exist
            SettlementEscalation: If the reservation could not be confirmed
        """
        async with self._serialized(reservation_id):
            reservation = await self.reservation_repo.get_by_id(reservation_id)
            if reservation is None:
                raise ReservationNotFound(reservation_id)

            flow = self._flows.get(reservation_id)

            if reservation.status == ReservationStatus.CONFIRMED:
                logger.info(
                    "settlement_already_confirmed",
                    reservation_id=str(reservation_id),
                    receipt=receipt,
                )
                self._settle_flow(flow, reservation.payment_receipt or receipt)
                return SettlementResult(
                    success=True,
                    state=flow.state if flow else Settled(reservation_id, reservation.payment_receipt),
                    reservation=reservation,
                )

            if reservation.status == ReservationStatus.CANCELLED:
                cause = f"reservation already cancelled ({reservation.cancellation_reason})"
                AuditLogger.log_payment_escalated(reservation_id=reservation_id, error=cause)
                logger.error(
                    "settlement_paid_after_cancel",
                    reservation_id=str(reservation_id),
                    receipt=receipt,
                )
                raise SettlementEscalation(reservation_id, cause)

            if amount is not None and amount != reservation.total_price:
                await self._reject_amount_mismatch(reservation, flow, amount, receipt)

            confirmed = await self._confirm_with_retry(reservation_id, receipt)
            self._settle_flow(flow, receipt)

            AuditLogger.log_payment_settled(
                actor_id=confirmed.owner_id,
                reservation_id=reservation_id,
                amount=confirmed.total_price,
                receipt=receipt,
            )

            await self._redeem_promo(confirmed)
            await self._award_loyalty(confirmed)

            return SettlementResult(
                success=True,
                state=flow.state if flow else Settled(reservation_id, receipt),
                reservation=confirmed,
            )

    async def _reject_amount_mismatch(
        self,
        reservation: Reservation,
        flow: Optional[SettlementFlow],
        amount: int,
        receipt: Optional[str],
    ) -> None:
        """Release the bike and escalate a payment for the wrong amount."""
        cause = f"paid {amount} but reservation total is {reservation.total_price}"
        logger.error(
            "settlement_amount_mismatch",
            reservation_id=str(reservation.id),
            expected=reservation.total_price,
            paid=amount,
            receipt=receipt,
        )
        AuditLogger.log_payment_escalated(reservation_id=reservation.id, error=cause)

        if flow is not None and isinstance(flow.state, AwaitingPayment):
            flow.update_attempt(PaymentAttemptStatus.REJECTED, failure_reason=cause)
            flow.fail(cause)
        await self._cancel_best_effort(reservation.id, CANCEL_REASON_AMOUNT_MISMATCH)

        raise SettlementEscalation(reservation.id, cause)

    def _settle_flow(self, flow: Optional[SettlementFlow], receipt: Optional[str]) -> None:
        if flow is not None and isinstance(flow.state, AwaitingPayment):
            flow.update_attempt(PaymentAttemptStatus.SETTLED)
            flow.settle(receipt)

    async def _confirm_with_retry(
        self, reservation_id: UUID, receipt: Optional[str]
    ) -> Reservation:
        """Write the confirmed status, retrying transient failures."""
        last_error = ""

        for attempt in range(1, self.confirm_retry_attempts + 1):
            try:
                return await self.reservation_repo.update_status(
                    reservation_id, ReservationStatus.CONFIRMED, receipt=receipt
                )
            except InvalidStatusTransition as e:
                # Lost a race; the row no longer allows confirmation
                last_error = str(e)
                break
            except Exception as e:
                last_error = str(e)
                logger.warning(
                    "settlement_confirm_retry",
                    reservation_id=str(reservation_id),
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self.confirm_retry_attempts:
                    await asyncio.sleep(self.confirm_retry_backoff_seconds * attempt)

        AuditLogger.log_payment_escalated(reservation_id=reservation_id, error=last_error)
        logger.error(
            "settlement_confirm_escalated",
            reservation_id=str(reservation_id),
            receipt=receipt,
            error=last_error,
        )
        raise SettlementEscalation(reservation_id, last_error)

    async def _redeem_promo(self, reservation: Reservation) -> None:
        """Count one use of the applied promo code."""
        if reservation.promo_code_id is None:
            return

        try:
            redeemed = await self.promo_repo.redeem(reservation.promo_code_id)
        except Exception as e:
            logger.error(
                "settlement_promo_redemption_failed",
                reservation_id=str(reservation.id),
                promo_code_id=str(reservation.promo_code_id),
                error=str(e),
                exc_info=True,
            )
            return

        if not redeemed:
            logger.warning(
                "settlement_promo_cap_reached",
                reservation_id=str(reservation.id),
                promo_code=reservation.promo_code,
            )
            return

        AuditLogger.log_promo_redeemed(
            actor_id=reservation.owner_id,
            promo_code_id=reservation.promo_code_id,
            code=reservation.promo_code or "",
            reservation_id=reservation.id,
        )

    async def _award_loyalty(self, reservation: Reservation) -> None:
        """Credit points for a confirmed reservation, at most once."""
        points = points_for_total(reservation.total_price)

        try:
            if await self.loyalty_service.already_awarded(reservation.id):
                logger.info("settlement_loyalty_already_awarded", reservation_id=str(reservation.id))
                return

            await self.loyalty_service.award(
                owner_id=reservation.owner_id,
                points=points,
                reason=f"Booking: {reservation.display_name}",
                source_id=reservation.id,
            )
        except DuplicateAward:
            logger.info("settlement_loyalty_already_awarded", reservation_id=str(reservation.id))
        except Exception as e:
            logger.error(
                "settlement_loyalty_award_failed",
                reservation_id=str(reservation.id),
                points=points,
                error=str(e),
                exc_info=True,
            )

    async def on_payment_rejected(self, reservation_id: UUID, reason: str) -> SettlementResult:
        """Provider declined the payment; the reservation is cancelled."""
        return await self._close_unpaid(
            reservation_id,
            cancel_reason=CANCEL_REASON_PAYMENT_FAILED,
            error_code=SettlementErrorCode.PAYMENT_FAILED,
            message=reason,
        )

    async def on_payment_cancelled(self, reservation_id: UUID) -> SettlementResult:
        """Payer dismissed the prompt; the rider is back at the form."""
        return await self._close_unpaid(
            reservation_id,
            cancel_reason=CANCEL_REASON_PAYMENT_CANCELLED,
            error_code=SettlementErrorCode.PAYMENT_CANCELLED,
            message="Payment cancelled on phone",
        )

    async def _close_unpaid(
        self,
        reservation_id: UUID,
        cancel_reason: str,
        error_code: SettlementErrorCode,
        message: str,
    ) -> SettlementResult:
        async with self._serialized(reservation_id):
            reservation = await self.reservation_repo.get_by_id(reservation_id)
            if reservation is None:
                raise ReservationNotFound(reservation_id)

            flow = self._flows.get(reservation_id)

            if reservation.status != ReservationStatus.PENDING_PAYMENT:
                logger.warning(
                    "settlement_late_payment_outcome",
                    reservation_id=str(reservation_id),
                    status=reservation.status.value,
                    outcome=cancel_reason,
                )
                return SettlementResult(
                    success=False,
                    state=flow.state if flow else None,
                    reservation=reservation,
                    error_code=error_code,
                    error=message,
                )

            AuditLogger.log_payment_rejected(
                actor_id=reservation.owner_id,
                reservation_id=reservation_id,
                reason=message,
            )
            cancelled = await self._cancel_best_effort(
                reservation_id, cancel_reason, actor_id=reservation.owner_id
            )

            if flow is not None and isinstance(flow.state, AwaitingPayment):
                flow.update_attempt(PaymentAttemptStatus.REJECTED, failure_reason=message)
                if cancel_reason == CANCEL_REASON_PAYMENT_CANCELLED:
                    flow.cancel(message)
                else:
                    flow.fail(message)

            if flow is not None:
                state = flow.state
            elif cancel_reason == CANCEL_REASON_PAYMENT_CANCELLED:
                state = CollectingDetails(last_error=message)
            else:
                state = Failed(reservation_id=reservation_id, reason=message)

            return SettlementResult(
                success=False,
                state=state,
                reservation=cancelled or reservation,
                error_code=error_code,
                error=message,
            )

    async def on_payment_unknown(self, reservation_id: UUID) -> SettlementResult:
        """No outcome yet; the reservation stays pending for reconciliation."""
        async with self._serialized(reservation_id):
            reservation = await self.reservation_repo.get_by_id(reservation_id)
            if reservation is None:
                raise ReservationNotFound(reservation_id)

            flow = self._flows.get(reservation_id)
            if flow is not None and isinstance(flow.state, AwaitingPayment):
                flow.update_attempt(PaymentAttemptStatus.UNKNOWN)

            logger.info(
                "settlement_payment_unknown",
                reservation_id=str(reservation_id),
                checkout_request_id=reservation.payment_reference,
            )

            return SettlementResult(
                success=False,
                state=flow.state if flow else None,
                reservation=reservation,
            )

    async def reconcile_payment(self, reservation_id: UUID) -> SettlementResult:
        """
        Ask the provider for the outcome of a pending reservation's payment.

        Raises:
            ReservationNotFound: If the reservation does not exist
            SettlementEscalation: If a settled payment could not be confirmed
        """
        reservation = await self.reservation_repo.get_by_id(reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)

        if reservation.status != ReservationStatus.PENDING_PAYMENT:
            return SettlementResult(
                success=reservation.status == ReservationStatus.CONFIRMED,
                state=self.get_state(reservation_id),
                reservation=reservation,
            )

        if not reservation.payment_reference:
            return await self.on_payment_unknown(reservation_id)

        query = await self.gateway.query_status(reservation.payment_reference)

        logger.info(
            "settlement_reconciled",
            reservation_id=str(reservation_id),
            outcome=query.outcome.value,
            result_code=query.result_code,
        )

        if query.outcome == PaymentOutcome.SETTLED:
            return await self.on_payment_settled(reservation_id)
        if query.outcome == PaymentOutcome.CANCELLED:
            return await self.on_payment_cancelled(reservation_id)
        if query.outcome == PaymentOutcome.REJECTED:
            return await self.on_payment_rejected(
                reservation_id, query.result_desc or "Payment declined"
            )
        return await self.on_payment_unknown(reservation_id)
