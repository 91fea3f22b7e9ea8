"""Buyer- and admin-initiated order cancellation."""

import uuid
from datetime import datetime
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.datetime_utils import hours_until, start_of_day_utc, utc_now
from libs.common.emails.client import notify
from libs.common.errors import Conflict, DependencyUnavailable, NotFound, ServiceError
from libs.common.logging import get_logger
from libs.common.rate_limit import CANCEL_ORDER, check_rate_limit
from services.payments_service.gateway import (
    GatewayError,
    GatewayUnavailable,
    PaymentGateway,
    get_gateway,
)
from services.payments_service.models import IntentStatus, PaymentIntentRecord
from services.payments_service.services.payouts import cancel_order_payouts
from services.store_service.models import Order, OrderStatus, PaymentStatus
from services.store_service.services import inventory
from services.store_service.services.checkout import refund_redeemed_credits, release_cart
from services.store_service.services.order_state import CANCELLABLE_STATUSES, transition
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def _reverse_payment(
    gateway: PaymentGateway, order: Order, intent: Optional[PaymentIntentRecord]
) -> None:
    """Refund a captured payment or void an uncaptured one."""
    if intent is None:
        return

    try:
        if order.payment_status == PaymentStatus.SUCCEEDED:
            refund = await gateway.refund(
                intent.provider_intent_id,
                idempotency_key=f"refund-{order.id}",
                reason="requested_by_customer",
            )
            intent.status = IntentStatus.REFUNDED
            intent.refund_id = refund.refund_id
            order.payment_status = PaymentStatus.REFUNDED
            logger.info("Refunded %d cents for order %s", refund.amount_cents, order.id)
        elif intent.status in (IntentStatus.PENDING, IntentStatus.REQUIRES_ACTION):
            await gateway.cancel_payment_intent(intent.provider_intent_id)
            intent.status = IntentStatus.CANCELED
            order.payment_status = PaymentStatus.FAILED
    except GatewayUnavailable:
        raise DependencyUnavailable(
            "PAYMENT_UNAVAILABLE",
            "We couldn't reach the payment provider to reverse the charge. Please try again.",
        )
    except GatewayError as e:
        raise ServiceError("REFUND_FAILED", e.message, 502)


async def cancel_order(
    db: AsyncSession,
    user: AuthUser,
    order_id: uuid.UUID,
    *,
    reason: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Cancel an order more than CANCELLATION_CUTOFF_HOURS before delivery.

    Restores inventory, refunds redeemed credits, cancels pending payouts and
    reverses the payment. The payment is reversed before any local state is
    written, so a gateway failure leaves the order untouched.
    """
    settings = get_settings()
    now = now or utc_now()
    gateway = gateway or get_gateway()

    await check_rate_limit(CANCEL_ORDER, user.user_id)

    order = await db.get(Order, order_id, populate_existing=True)
    if order is None or (order.buyer_id != user.user_id and not user.is_admin):
        raise NotFound("ORDER_NOT_FOUND", "Order not found")

    if order.status not in CANCELLABLE_STATUSES:
        raise Conflict(
            "INVALID_STATUS",
            f"Orders in status {order.status.value} cannot be cancelled",
            current_status=order.status.value,
        )

    hours_left = hours_until(start_of_day_utc(order.delivery_date), now)
    if hours_left <= settings.CANCELLATION_CUTOFF_HOURS:
        raise ServiceError(
            "TOO_LATE_TO_CANCEL",
            f"Orders can only be cancelled more than "
            f"{settings.CANCELLATION_CUTOFF_HOURS} hours before delivery",
            hours_until_delivery=round(hours_left, 1),
        )

    intent = await db.scalar(
        select(PaymentIntentRecord).where(PaymentIntentRecord.order_id == order.id)
    )
    await _reverse_payment(gateway, order, intent)

    await inventory.restore_order_inventory(db, order, now)
    await refund_redeemed_credits(db, order, now)
    await cancel_order_payouts(db, order.id)
    transition(order, OrderStatus.CANCELLED, now)
    order.cancellation_reason = reason or (
        "Cancelled by admin" if user.user_id != order.buyer_id else "Cancelled by buyer"
    )
    await release_cart(db, order)
    await db.commit()

    logger.info(
        "Order %s cancelled by %s",
        order.id,
        user.user_id,
        extra={"extra_fields": {"order_id": str(order.id), "hours_left": hours_left}},
    )
    notify(
        "order_cancelled",
        order.buyer_id,
        {"order_id": str(order.id), "refunded": order.payment_status == PaymentStatus.REFUNDED},
    )
    return order
