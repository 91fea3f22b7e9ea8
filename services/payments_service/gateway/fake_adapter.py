"""Configurable fake payment gateway for development and testing.

Simulates the processor without external calls. Tests configure it to
decline, time out, or fail transfers for particular destinations, and
inspect ``calls`` afterwards. Idempotency keys are honoured the way the
real processor honours them: a repeated key returns the first result.
"""

from typing import Optional
from uuid import uuid4

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


class FakePaymentGateway(PaymentGateway):
    """In-memory payment gateway."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.intents: dict[str, PaymentIntentResult] = {}
        self._by_key: dict[str, object] = {}
        self.configure()

    def configure(
        self,
        *,
        intent_status: str = "pending",
        decline_code: Optional[str] = None,
        timeout: bool = False,
        unavailable: bool = False,
        failing_destinations: Optional[dict[str, Exception]] = None,
    ) -> None:
        """Configure gateway behavior at runtime.

        ``failing_destinations`` maps a connected account id to the exception
        ``create_transfer`` raises for it.
        """
        self.intent_status = intent_status
        self.decline_code = decline_code
        self.timeout = timeout
        self.unavailable = unavailable
        self.failing_destinations = dict(failing_destinations or {})

    def _check_availability(self) -> None:
        if self.timeout:
            raise GatewayTimeout("Timed out talking to payment gateway")
        if self.unavailable:
            raise GatewayUnavailable("Payment gateway unavailable", status_code=503)

    def set_intent_status(self, intent_id: str, status: str) -> None:
        """Simulate the processor moving an intent (e.g. after 3DS)."""
        intent = self.intents[intent_id]
        self.intents[intent_id] = PaymentIntentResult(
            intent_id=intent.intent_id,
            status=status,
            amount_cents=intent.amount_cents,
            client_secret=intent.client_secret,
            metadata=intent.metadata,
        )

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    async def create_payment_intent(
        self,
        amount_cents: int,
        *,
        idempotency_key: str,
        currency: str = "usd",
        metadata: Optional[dict] = None,
        payment_method_id: Optional[str] = None,
    ) -> PaymentIntentResult:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount_cents": amount_cents,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "metadata": metadata or {},
                "payment_method_id": payment_method_id,
            }
        )
        self._check_availability()
        if idempotency_key in self._by_key:
            return self._by_key[idempotency_key]
        if self.decline_code:
            raise PaymentDeclined(
                "Your card was declined.", decline_code=self.decline_code, status_code=402
            )

        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        intent = PaymentIntentResult(
            intent_id=intent_id,
            status=self.intent_status,
            amount_cents=amount_cents,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            metadata=dict(metadata or {}),
        )
        self.intents[intent_id] = intent
        self._by_key[idempotency_key] = intent
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        self.calls.append({"method": "retrieve_payment_intent", "intent_id": intent_id})
        self._check_availability()
        if intent_id not in self.intents:
            raise GatewayError(f"No such payment_intent: {intent_id}", status_code=404)
        return self.intents[intent_id]

    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        self.calls.append({"method": "cancel_payment_intent", "intent_id": intent_id})
        self._check_availability()
        if intent_id not in self.intents:
            raise GatewayError(f"No such payment_intent: {intent_id}", status_code=404)
        if self.intents[intent_id].status != "succeeded":
            self.set_intent_status(intent_id, "canceled")
        return self.intents[intent_id]

    async def refund(
        self,
        intent_id: str,
        *,
        idempotency_key: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "refund",
                "intent_id": intent_id,
                "idempotency_key": idempotency_key,
                "amount_cents": amount_cents,
                "reason": reason,
            }
        )
        self._check_availability()
        if idempotency_key in self._by_key:
            return self._by_key[idempotency_key]
        intent = self.intents.get(intent_id)
        refund = RefundResult(
            refund_id=f"re_fake_{uuid4().hex[:16]}",
            status="succeeded",
            amount_cents=amount_cents
            if amount_cents is not None
            else (intent.amount_cents if intent else 0),
        )
        self._by_key[idempotency_key] = refund
        return refund

    async def create_transfer(
        self,
        amount_cents: int,
        *,
        destination: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> TransferResult:
        self.calls.append(
            {
                "method": "create_transfer",
                "amount_cents": amount_cents,
                "destination": destination,
                "idempotency_key": idempotency_key,
                "metadata": metadata or {},
            }
        )
        self._check_availability()
        if destination in self.failing_destinations:
            raise self.failing_destinations[destination]
        if idempotency_key in self._by_key:
            return self._by_key[idempotency_key]
        transfer = TransferResult(
            transfer_id=f"tr_fake_{uuid4().hex[:16]}",
            amount_cents=amount_cents,
            destination=destination,
        )
        self._by_key[idempotency_key] = transfer
        return transfer
