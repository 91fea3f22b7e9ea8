"""
Stripe REST adapter.

Talks to the Stripe API directly over httpx:
- Payment intents (create/confirm, retrieve, cancel)
- Refunds
- Connect transfers for payouts

Every mutating call carries an ``Idempotency-Key`` so a retried request
never charges or transfers twice.
"""

from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.payments_service.gateway.port import (
    GatewayError,
    GatewayTimeout,
    GatewayUnavailable,
    PaymentDeclined,
    PaymentGateway,
    PaymentIntentResult,
    RefundResult,
    TransferResult,
)

logger = get_logger(__name__)

_INTENT_STATUS_MAP = {
    "succeeded": "succeeded",
    "requires_action": "requires_action",
    "requires_confirmation": "requires_action",
    "canceled": "canceled",
}


def map_intent_status(stripe_status: str) -> str:
    """Collapse Stripe's intent states into ours. Unknown states are pending."""
    return _INTENT_STATUS_MAP.get(stripe_status, "pending")


def _form_encode(data: dict[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten nested dicts into Stripe's ``metadata[key]`` form fields."""
    flat: dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            flat.update(_form_encode(value, name))
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


class StripePaymentGateway(PaymentGateway):
    """Async client for the Stripe API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.base_url = (base_url or settings.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {self.secret_key}"}

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        headers = dict(self._headers)
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{endpoint}",
                    headers=headers,
                    data=_form_encode(data) if data else None,
                )
        except httpx.TimeoutException as e:
            logger.warning("Stripe %s %s timed out", method, endpoint)
            raise GatewayTimeout(f"Stripe request timed out: {e}") from e
        except httpx.TransportError as e:
            logger.warning("Stripe %s %s transport error: %s", method, endpoint, e)
            raise GatewayUnavailable(f"Could not reach Stripe: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success:
            return body

        error = body.get("error", {}) if isinstance(body, dict) else {}
        message = error.get("message", "Unknown Stripe error")
        logger.error(
            "Stripe API error: %s - %s", response.status_code, error.get("code")
        )
        if response.status_code >= 500 or response.status_code == 429:
            raise GatewayUnavailable(
                message, status_code=response.status_code, response_data=body
            )
        if error.get("type") == "card_error" or response.status_code == 402:
            raise PaymentDeclined(
                message,
                decline_code=error.get("decline_code") or error.get("code"),
                status_code=response.status_code,
                response_data=body,
            )
        raise GatewayError(message, status_code=response.status_code, response_data=body)

    @staticmethod
    def _intent(data: dict) -> PaymentIntentResult:
        status = map_intent_status(data.get("status", ""))
        if data.get("last_payment_error") and status == "pending":
            status = "failed"
        return PaymentIntentResult(
            intent_id=data["id"],
            status=status,
            amount_cents=int(data.get("amount", 0)),
            client_secret=data.get("client_secret"),
            metadata=data.get("metadata") or {},
        )

    async def create_payment_intent(
        self,
        amount_cents: int,
        *,
        idempotency_key: str,
        currency: str = "usd",
        metadata: Optional[dict] = None,
        payment_method_id: Optional[str] = None,
    ) -> PaymentIntentResult:
        payload: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "metadata": metadata or {},
        }
        if payment_method_id:
            payload["payment_method"] = payment_method_id
            payload["confirm"] = True
        else:
            payload["automatic_payment_methods"] = {"enabled": True}

        data = await self._request(
            "POST", "/payment_intents", payload, idempotency_key=idempotency_key
        )
        return self._intent(data)

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        return self._intent(await self._request("GET", f"/payment_intents/{intent_id}"))

    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        data = await self._request(
            "POST",
            f"/payment_intents/{intent_id}/cancel",
            idempotency_key=f"cancel-{intent_id}",
        )
        return self._intent(data)

    async def refund(
        self,
        intent_id: str,
        *,
        idempotency_key: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        payload: dict[str, Any] = {
            "payment_intent": intent_id,
            "reason": "requested_by_customer",
            "amount": amount_cents,
            "metadata": {"reason": reason} if reason else None,
        }
        data = await self._request(
            "POST", "/refunds", payload, idempotency_key=idempotency_key
        )
        return RefundResult(
            refund_id=data["id"],
            status=data.get("status", "pending"),
            amount_cents=int(data.get("amount", amount_cents or 0)),
        )

    async def create_transfer(
        self,
        amount_cents: int,
        *,
        destination: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> TransferResult:
        data = await self._request(
            "POST",
            "/transfers",
            {
                "amount": amount_cents,
                "currency": currency,
                "destination": destination,
                "metadata": metadata or {},
            },
            idempotency_key=idempotency_key,
        )
        return TransferResult(
            transfer_id=data["id"],
            amount_cents=int(data.get("amount", amount_cents)),
            destination=data.get("destination", destination),
        )
