"""Payment gateway port (abstract interface).

Everything the marketplace needs from the payment processor: payment
intents for checkout, refunds for cancellations, and transfers to connected
accounts for payouts. Amounts are integer cents.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentIntentResult:
    intent_id: str
    status: str  # pending | requires_action | succeeded | failed | canceled
    amount_cents: int
    client_secret: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount_cents: int


@dataclass(frozen=True)
class TransferResult:
    transfer_id: str
    amount_cents: int
    destination: str


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GatewayError(Exception):
    """The gateway rejected the request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class GatewayUnavailable(GatewayError):
    """Network failure or 5xx. The outcome is unknown; retry with the same key."""


class GatewayTimeout(GatewayUnavailable):
    """No answer within the configured timeout."""


class PaymentDeclined(GatewayError):
    """Card or payment method declined."""

    def __init__(self, message: str, decline_code: Optional[str] = None, **kwargs):
        self.decline_code = decline_code
        super().__init__(message, **kwargs)


# ---------------------------------------------------------------------------
# Port
# ---------------------------------------------------------------------------


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    async def create_payment_intent(
        self,
        amount_cents: int,
        *,
        idempotency_key: str,
        currency: str = "usd",
        metadata: Optional[dict] = None,
        payment_method_id: Optional[str] = None,
    ) -> PaymentIntentResult:
        """Create (and confirm, when a payment method is given) an intent."""

    @abstractmethod
    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        ...

    @abstractmethod
    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntentResult:
        ...

    @abstractmethod
    async def refund(
        self,
        intent_id: str,
        *,
        idempotency_key: str,
        amount_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """Refund a captured intent, fully when ``amount_cents`` is None."""

    @abstractmethod
    async def create_transfer(
        self,
        amount_cents: int,
        *,
        destination: str,
        idempotency_key: str,
        currency: str = "usd",
        metadata: Optional[dict] = None,
    ) -> TransferResult:
        """Move funds to a connected account."""
