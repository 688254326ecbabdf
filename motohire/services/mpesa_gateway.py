"""M-Pesa STK push payment gateway.

Sends a payment prompt to the rider's phone through the Safaricom Daraja
API. An accepted request only means the prompt was queued; the payment
outcome arrives later through the callback or a status query.
"""

import base64
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import httpx

from motohire.logging import get_logger
from motohire.models.payment import (
    RESULT_CODE_CANCELLED_BY_USER,
    PaymentCallback,
    PaymentOutcome,
    PaymentStatusQuery,
    PushAccepted,
    PushRejected,
    PushResult,
    RejectionKind,
)
from motohire.services.payment_config import MpesaConfig

logger = get_logger(__name__)

# Daraja timestamps are in East Africa Time (UTC+3, no DST)
EAT = timezone(timedelta(hours=3))

ACCOUNT_REFERENCE_MAX_LENGTH = 12
TRANSACTION_DESC_MAX_LENGTH = 13

# Token lifetime margin so a token is never used right at expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 60

# Status query error code while the payer has not answered the prompt
QUERY_STILL_PROCESSING_CODE = "500.001.1001"

SIMULATED_REFERENCE_PREFIX = "SIM-"

_MSISDN_PATTERN = re.compile(r"^254[17]\d{8}$")


def normalize_msisdn(phone: str) -> Optional[str]:
    """
    Convert a Kenyan phone number to the 2547XXXXXXXX format Daraja expects.

    Accepts 07XX.., 01XX.., +2547XX.., 2547XX.. and bare 7XX.. numbers,
    with or without spaces and dashes.

    Returns:
        Normalized number, or None if the input is not a valid subscriber
    """
    if not phone:
        return None

    digits = re.sub(r"[\s\-()]", "", phone)
    if digits.startswith("+"):
        digits = digits[1:]
    if not digits.isdigit():
        return None

    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits

    if not _MSISDN_PATTERN.match(digits):
        return None
    return digits


def is_simulated_reference(checkout_request_id: Optional[str]) -> bool:
    """Check whether a checkout request ID was produced by simulation."""
    return bool(checkout_request_id) and checkout_request_id.startswith(SIMULATED_REFERENCE_PREFIX)


class ProviderUnavailable(Exception):
    """Provider not configured, unreachable or failing."""


class MpesaGateway:
    """Adapter for Daraja STK push and status query."""

    def __init__(
        self,
        config: MpesaConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize gateway.

        Args:
            config: M-Pesa credentials and environment
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config = config
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )

    @staticmethod
    def timestamp(now: Optional[datetime] = None) -> str:
        """Daraja request timestamp (YYYYMMDDHHMMSS, EAT)."""
        now = now or datetime.now(EAT)
        return now.astimezone(EAT).strftime("%Y%m%d%H%M%S")

    def password(self, timestamp: str) -> str:
        """STK password: base64(shortcode + passkey + timestamp)."""
        raw = f"{self.config.shortcode}{self.config.passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        """Fetch (or reuse) an OAuth client-credentials token."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        try:
            response = await client.get(
                "/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self.config.consumer_key, self.config.consumer_secret),
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Token request failed: {e}") from e

        if response.status_code != 200:
            raise ProviderUnavailable(
                f"Token request refused with status {response.status_code}"
            )

        try:
            data = response.json()
            token = data["access_token"]
            expires_in = int(data.get("expires_in", 3599))
        except (ValueError, KeyError) as e:
            raise ProviderUnavailable("Malformed token response") from e

        self._access_token = token
        self._token_expires_at = time.monotonic() + max(
            0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS
        )
        return token

    def _configuration_failure(self, reason: str, reference: UUID) -> PushResult:
        """Reject, or fall back to a simulated prompt when explicitly enabled."""
        if self.config.simulation_enabled:
            checkout_request_id = f"{SIMULATED_REFERENCE_PREFIX}{uuid4().hex[:20]}"
            logger.warning(
                "mpesa_push_simulated",
                reference=str(reference),
                reason=reason,
                checkout_request_id=checkout_request_id,
            )
            return PushAccepted(
                provider_message="Simulated payment prompt (M-Pesa not available)",
                checkout_request_id=checkout_request_id,
                simulated=True,
            )

        logger.error("mpesa_push_unavailable", reference=str(reference), reason=reason)
        return PushRejected(kind=RejectionKind.CONFIGURATION, reason=reason)

    async def request_push(
        self,
        payer_phone: str,
        amount: int,
        reference: UUID,
        description: str,
    ) -> PushResult:
        """
        Ask the provider to prompt the payer for a payment.

        Args:
            payer_phone: Rider's phone number in any common Kenyan format
            amount: Whole KES amount
            reference: Reservation ID, echoed back for correlation
            description: Short description shown on the prompt

        Returns:
            PushAccepted when a prompt was queued, PushRejected otherwise
        """
        phone = normalize_msisdn(payer_phone)
        if phone is None:
            return PushRejected(
                kind=RejectionKind.BUSINESS,
                reason="Invalid M-Pesa phone number",
            )

        if not isinstance(amount, int) or amount <= 0:
            return PushRejected(
                kind=RejectionKind.BUSINESS,
                reason=f"Invalid payment amount: {amount}",
            )

        if not self.config.is_configured:
            return self._configuration_failure("M-Pesa is not configured", reference)

        timestamp = self.timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.config.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": str(reference).replace("-", "")[:ACCOUNT_REFERENCE_MAX_LENGTH],
            "TransactionDesc": description[:TRANSACTION_DESC_MAX_LENGTH],
        }

        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                response = await client.post(
                    "/mpesa/stkpush/v1/processrequest",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except ProviderUnavailable as e:
            return self._configuration_failure(str(e), reference)
        except httpx.HTTPError as e:
            return self._configuration_failure(f"STK push request failed: {e}", reference)

        if response.status_code >= 500 or response.status_code in (401, 403):
            return self._configuration_failure(
                f"STK push failed with status {response.status_code}", reference
            )

        try:
            data: dict[str, Any] = response.json()
        except ValueError:
            return self._configuration_failure("Malformed STK push response", reference)

        if str(data.get("ResponseCode")) == "0":
            logger.info(
                "mpesa_push_accepted",
                reference=str(reference),
                amount=amount,
                checkout_request_id=data.get("CheckoutRequestID"),
            )
            return PushAccepted(
                provider_message=data.get("CustomerMessage") or "Check your phone to complete payment",
                checkout_request_id=data.get("CheckoutRequestID"),
                merchant_request_id=data.get("MerchantRequestID"),
            )

        reason = (
            data.get("ResponseDescription")
            or data.get("errorMessage")
            or "STK push failed"
        )
        logger.warning(
            "mpesa_push_rejected",
            reference=str(reference),
            amount=amount,
            status_code=response.status_code,
            reason=reason,
        )
        return PushRejected(kind=RejectionKind.BUSINESS, reason=reason)

    async def query_status(self, checkout_request_id: str) -> PaymentStatusQuery:
        """
        Ask the provider for the outcome of a checkout request.

        Transport problems and "still processing" answers are reported as
        PENDING; they never imply success.
        """
        if is_simulated_reference(checkout_request_id):
            if self.config.simulation_enabled:
                return PaymentStatusQuery(
                    outcome=PaymentOutcome.SETTLED,
                    result_code=0,
                    result_desc="Simulated payment",
                )
            return PaymentStatusQuery(
                outcome=PaymentOutcome.REJECTED,
                result_desc="Simulated payment while simulation is disabled",
            )

        if not self.config.is_configured:
            return PaymentStatusQuery(
                outcome=PaymentOutcome.PENDING,
                result_desc="M-Pesa is not configured",
            )

        timestamp = self.timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        try:
            async with self._client() as client:
                token = await self._get_access_token(client)
                response = await client.post(
                    "/mpesa/stkpushquery/v1/query",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
            data: dict[str, Any] = response.json()
        except (ProviderUnavailable, httpx.HTTPError, ValueError) as e:
            logger.warning(
                "mpesa_status_query_failed",
                checkout_request_id=checkout_request_id,
                error=str(e),
            )
            return PaymentStatusQuery(outcome=PaymentOutcome.PENDING, result_desc=str(e))

        if data.get("errorCode") == QUERY_STILL_PROCESSING_CODE or "ResultCode" not in data:
            return PaymentStatusQuery(
                outcome=PaymentOutcome.PENDING,
                result_desc=data.get("errorMessage") or data.get("ResultDesc") or "",
            )

        result_code = int(data["ResultCode"])
        result_desc = data.get("ResultDesc", "")

        if result_code == 0:
            outcome = PaymentOutcome.SETTLED
        elif result_code == RESULT_CODE_CANCELLED_BY_USER:
            outcome = PaymentOutcome.CANCELLED
        else:
            outcome = PaymentOutcome.REJECTED

        logger.info(
            "mpesa_status_queried",
            checkout_request_id=checkout_request_id,
            result_code=result_code,
            outcome=outcome.value,
        )
        return PaymentStatusQuery(outcome=outcome, result_code=result_code, result_desc=result_desc)

    @staticmethod
    def parse_callback(payload: dict[str, Any]) -> PaymentCallback:
        """
        Parse the STK callback body.

        Raises:
            ValueError: If the payload is not an STK callback
        """
        try:
            stk = payload["Body"]["stkCallback"]
            items = stk.get("CallbackMetadata", {}).get("Item", [])
            metadata = {item.get("Name"): item.get("Value") for item in items}

            amount = metadata.get("Amount")
            receipt = metadata.get("MpesaReceiptNumber")
            phone = metadata.get("PhoneNumber")

            return PaymentCallback(
                merchant_request_id=stk.get("MerchantRequestID"),
                checkout_request_id=stk["CheckoutRequestID"],
                result_code=int(stk["ResultCode"]),
                result_desc=stk.get("ResultDesc", ""),
                amount=int(amount) if amount is not None else None,
                receipt_number=str(receipt) if receipt is not None else None,
                phone_number=str(phone) if phone is not None else None,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed STK callback: {e}") from e
