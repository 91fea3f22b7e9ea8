"""Payment gateway factory.

get_gateway() / set_gateway() select the implementation:
- StripePaymentGateway in production (PAYMENT_GATEWAY=stripe)
- FakePaymentGateway for development and tests (PAYMENT_GATEWAY=fake)
"""

from typing import Optional

from libs.common.config import get_settings
from services.payments_service.gateway.fake_adapter import FakePaymentGateway
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
from services.payments_service.gateway.stripe_adapter import StripePaymentGateway

_current_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway."""
    global _current_gateway
    if _current_gateway is None:
        if get_settings().PAYMENT_GATEWAY == "fake":
            _current_gateway = FakePaymentGateway()
        else:
            _current_gateway = StripePaymentGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None


__all__ = [
    "FakePaymentGateway",
    "GatewayError",
    "GatewayTimeout",
    "GatewayUnavailable",
    "PaymentDeclined",
    "PaymentGateway",
    "PaymentIntentResult",
    "RefundResult",
    "StripePaymentGateway",
    "TransferResult",
    "get_gateway",
    "reset_gateway",
    "set_gateway",
]
