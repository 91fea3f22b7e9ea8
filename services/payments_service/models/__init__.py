"""Payments Service models package."""

from services.payments_service.models.core import (
    PaymentIntentRecord,
    Payout,
    PayoutAccount,
    WebhookEvent,
)
from services.payments_service.models.enums import (
    IntentStatus,
    PayoutKind,
    PayoutStatus,
    RecipientType,
    WebhookEventStatus,
)

__all__ = [
    "IntentStatus",
    "PaymentIntentRecord",
    "Payout",
    "PayoutAccount",
    "PayoutKind",
    "PayoutStatus",
    "RecipientType",
    "WebhookEvent",
    "WebhookEventStatus",
]
