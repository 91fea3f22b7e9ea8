"""Checkout orchestration.

Checkout is a saga, not a distributed transaction:

    claim cart → reserve inventory → write order/payouts/credit redemption
    → commit → create payment intent → finalize (now or on webhook)

Everything up to the commit happens in one database transaction, so a
validation or stock failure rolls back all of it. Once committed, a
``pending_payment`` order with reserved stock is a valid resting state: the
payment webhook finalizes it, and the stale-order job cleans it up if the
process dies. A gateway failure after the commit runs the compensations in
reverse (``compensate_checkout``) before the error reaches the caller.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from libs.common.datetime_utils import order_cutoff, utc_now
from libs.common.emails.client import notify
from libs.common.errors import (
    Conflict,
    DependencyUnavailable,
    NotFound,
    ServiceError,
    ValidationFailed,
)
from libs.common.logging import get_logger
from libs.common.rate_limit import CHECKOUT, check_rate_limit
from services.payments_service.gateway import (
    GatewayError,
    GatewayUnavailable,
    PaymentDeclined,
    PaymentGateway,
    get_gateway,
)
from services.payments_service.models import IntentStatus, PaymentIntentRecord
from services.payments_service.services.payouts import (
    cancel_order_payouts,
    compute_split,
    create_order_payouts,
)
from services.store_service.models import (
    BuyerProfile,
    Cart,
    CartItem,
    MarketConfig,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
)
from services.store_service.services import inventory
from services.store_service.services.order_state import transition
from services.wallet_service.services import credits
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

_INTENT_TO_PAYMENT_STATUS = {
    IntentStatus.PENDING: PaymentStatus.PENDING,
    IntentStatus.REQUIRES_ACTION: PaymentStatus.REQUIRES_ACTION,
    IntentStatus.SUCCEEDED: PaymentStatus.SUCCEEDED,
    IntentStatus.FAILED: PaymentStatus.FAILED,
    IntentStatus.CANCELED: PaymentStatus.FAILED,
    IntentStatus.REFUNDED: PaymentStatus.REFUNDED,
}


# ============================================================================
# PRICING
# ============================================================================


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    delivery_fee_cents: int
    tip_cents: int
    credits_applied_cents: int
    total_cents: int


def price_order(
    subtotal_cents: int,
    delivery_fee_cents: int,
    tip_cents: int,
    requested_credits_cents: int = 0,
    available_credits_cents: int = 0,
) -> PriceBreakdown:
    """total = subtotal + fee + tip − credits, credits capped so total ≥ 0."""
    gross = subtotal_cents + delivery_fee_cents + tip_cents
    applied = max(0, min(requested_credits_cents, available_credits_cents, gross))
    return PriceBreakdown(
        subtotal_cents=subtotal_cents,
        delivery_fee_cents=delivery_fee_cents,
        tip_cents=tip_cents,
        credits_applied_cents=applied,
        total_cents=gross - applied,
    )


@dataclass(frozen=True)
class CheckoutResult:
    order_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    amount_charged_cents: int
    credits_redeemed_cents: int
    client_secret: Optional[str] = None
    existing: bool = False


# ============================================================================
# VALIDATION (read-only)
# ============================================================================


async def get_market_for_zip(db: AsyncSession, zip_code: str) -> MarketConfig:
    result = await db.execute(
        select(MarketConfig).where(
            MarketConfig.zip_code == zip_code, MarketConfig.is_active.is_(True)
        )
    )
    market = result.scalar_one_or_none()
    if market is None:
        raise ServiceError(
            "NO_MARKET_CONFIG",
            f"We don't deliver to {zip_code} yet",
            zip_code=zip_code,
        )
    return market


def validate_delivery_date(
    market: MarketConfig, delivery_date: date, now: datetime
) -> None:
    """Raise INVALID_DELIVERY_DATE or CUTOFF_PASSED."""
    local_today = now.astimezone(ZoneInfo(market.timezone)).date()
    if delivery_date <= local_today:
        raise ServiceError(
            "INVALID_DELIVERY_DATE",
            "Delivery date must be in the future",
            delivery_date=delivery_date.isoformat(),
        )

    day_name = WEEKDAYS[delivery_date.weekday()]
    allowed = {day.lower() for day in market.delivery_days or []}
    if day_name.lower() not in allowed:
        raise ServiceError(
            "INVALID_DELIVERY_DATE",
            f"{market.name} does not deliver on {day_name}",
            delivery_date=delivery_date.isoformat(),
            delivery_days=list(market.delivery_days or []),
        )

    cutoff = order_cutoff(delivery_date, market.cutoff_time, market.timezone)
    if now >= cutoff:
        raise ServiceError(
            "CUTOFF_PASSED",
            f"Ordering for {delivery_date.isoformat()} closed at {cutoff.isoformat()}",
            cutoff=cutoff.isoformat(),
        )


async def _load_cart(db: AsyncSession, cart_id: uuid.UUID, buyer_id: str) -> Cart:
    result = await db.execute(
        select(Cart)
        .where(Cart.id == cart_id)
        .options(selectinload(Cart.items).selectinload(CartItem.product))
    )
    cart = result.scalar_one_or_none()
    if cart is None or cart.buyer_id != buyer_id:
        raise NotFound("INVALID_CART", "Cart not found")
    return cart


async def _load_profile(db: AsyncSession, buyer_id: str) -> BuyerProfile:
    profile = await db.get(BuyerProfile, buyer_id)
    if profile is None or not profile.street_address or not profile.zip_code:
        raise ServiceError(
            "MISSING_PROFILE_INFO",
            "Add your delivery address and ZIP code before checking out",
        )
    return profile


def _cart_subtotal(cart: Cart) -> int:
    subtotal = 0
    for item in cart.items:
        product = item.product
        if product is None or not product.is_active or not product.is_approved:
            raise ServiceError(
                "INVALID_CART",
                "Cart contains an item that is no longer available",
                product_id=str(item.product_id),
            )
        subtotal += product.unit_price_cents * item.quantity
    return subtotal


async def _intent_for_order(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[PaymentIntentRecord]:
    result = await db.execute(
        select(PaymentIntentRecord).where(PaymentIntentRecord.order_id == order_id)
    )
    return result.scalar_one_or_none()


async def _existing_checkout(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[CheckoutResult]:
    """Result for a checkout already in flight on this cart, if any."""
    order = await db.get(Order, order_id)
    if order is None or order.status != OrderStatus.PENDING_PAYMENT:
        return None
    intent = await _intent_for_order(db, order.id)
    logger.info("Returning existing pending order %s for cart %s", order.id, order.cart_id)
    return CheckoutResult(
        order_id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        amount_charged_cents=order.total_cents,
        credits_redeemed_cents=order.credits_redeemed_cents,
        client_secret=intent.client_secret if intent else None,
        existing=True,
    )


async def release_cart(db: AsyncSession, order: Order) -> None:
    if order.cart_id is None:
        return
    await db.execute(
        update(Cart)
        .where(Cart.id == order.cart_id, Cart.active_order_id == order.id)
        .values(active_order_id=None)
        .execution_options(synchronize_session=False)
    )


# ============================================================================
# CHECKOUT
# ============================================================================


async def checkout(
    db: AsyncSession,
    *,
    buyer_id: str,
    cart_id: uuid.UUID,
    delivery_date: date,
    use_credits: bool = False,
    credits_amount_cents: int = 0,
    tip_cents: int = 0,
    payment_method_id: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    """Turn a cart into an order (and a payment intent when money is owed)."""
    now = now or utc_now()
    gateway = gateway or get_gateway()

    await check_rate_limit(CHECKOUT, buyer_id)

    if tip_cents < 0 or credits_amount_cents < 0:
        raise ValidationFailed("Tip and credit amounts cannot be negative")

    cart = await _load_cart(db, cart_id, buyer_id)

    if cart.active_order_id is not None:
        existing = await _existing_checkout(db, cart.active_order_id)
        if existing:
            return existing

    if not cart.items:
        raise ServiceError("CART_EMPTY", "Your cart is empty")

    profile = await _load_profile(db, buyer_id)
    market = await get_market_for_zip(db, profile.zip_code)
    validate_delivery_date(market, delivery_date, now)

    subtotal = _cart_subtotal(cart)
    if subtotal < market.minimum_order_cents:
        raise ServiceError(
            "BELOW_MINIMUM_ORDER",
            f"Minimum order is ${market.minimum_order_cents / 100:.2f}",
            minimum=market.minimum_order_cents / 100,
            current=subtotal / 100,
        )

    available_credits = 0
    if use_credits and credits_amount_cents > 0:
        balance = await credits.get_balance(db, buyer_id, now)
        available_credits = balance.available_cents
    price = price_order(
        subtotal,
        market.delivery_fee_cents,
        tip_cents,
        credits_amount_cents if use_credits else 0,
        available_credits,
    )

    # -- Transaction: claim cart, reserve, write order -----------------------
    order_id = uuid.uuid4()
    claim = await db.execute(
        update(Cart)
        .where(
            Cart.id == cart.id,
            (Cart.active_order_id.is_(None)) | (Cart.active_order_id == cart.active_order_id),
        )
        .values(active_order_id=order_id)
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        # Another request for this cart got there first.
        await db.rollback()
        active = await db.scalar(select(Cart.active_order_id).where(Cart.id == cart.id))
        existing = await _existing_checkout(db, active) if active else None
        if existing:
            return existing
        raise Conflict("CHECKOUT_IN_PROGRESS", "A checkout for this cart is in progress")

    try:
        order_items = []
        for item in cart.items:
            await inventory.reserve(db, item.product_id, item.quantity, item.product.name)
            order_items.append(
                OrderItem(
                    product_id=item.product_id,
                    seller_id=item.product.seller_id,
                    product_name=item.product.name,
                    quantity=item.quantity,
                    unit_price_cents=item.product.unit_price_cents,
                    subtotal_cents=item.product.unit_price_cents * item.quantity,
                )
            )

        split = compute_split(
            [(oi.seller_id, oi.subtotal_cents) for oi in order_items],
            price.tip_cents,
            market.collection_point_seller_id,
        )

        order = Order(
            id=order_id,
            buyer_id=buyer_id,
            cart_id=cart.id,
            delivery_date=delivery_date,
            zip_code=profile.zip_code,
            status=OrderStatus.PENDING_PAYMENT,
            payment_status=PaymentStatus.PENDING,
            subtotal_cents=price.subtotal_cents,
            delivery_fee_cents=price.delivery_fee_cents,
            tip_cents=price.tip_cents,
            credits_redeemed_cents=price.credits_applied_cents,
            platform_fee_cents=split.platform_fee_cents,
            total_cents=price.total_cents,
            recipient_name=profile.full_name,
            street_address=profile.street_address,
            city=profile.city,
            state=profile.state,
            items=order_items,
            created_at=now,
        )
        db.add(order)
        await db.flush()
        create_order_payouts(db, order.id, split)

        if price.credits_applied_cents > 0:
            await credits.redeem(
                db,
                consumer_id=buyer_id,
                amount_cents=price.credits_applied_cents,
                order_id=order.id,
                idempotency_key=f"redeem-order-{order.id}",
                now=now,
                commit=False,
            )

        if price.total_cents == 0:
            order.payment_status = PaymentStatus.NONE
            await finalize_order(db, order, now=now)
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info(
        "Checkout created order %s for %s: subtotal=%d fee=%d tip=%d credits=%d total=%d",
        order.id,
        buyer_id,
        price.subtotal_cents,
        price.delivery_fee_cents,
        price.tip_cents,
        price.credits_applied_cents,
        price.total_cents,
    )

    if price.total_cents == 0:
        return CheckoutResult(
            order_id=order.id,
            status=order.status,
            payment_status=order.payment_status,
            amount_charged_cents=0,
            credits_redeemed_cents=price.credits_applied_cents,
        )

    return await _collect_payment(db, gateway, order, payment_method_id, now)


async def _collect_payment(
    db: AsyncSession,
    gateway: PaymentGateway,
    order: Order,
    payment_method_id: Optional[str],
    now: datetime,
) -> CheckoutResult:
    """Create the payment intent; compensate the order if that fails."""
    try:
        intent = await gateway.create_payment_intent(
            order.total_cents,
            idempotency_key=f"order-{order.id}",
            metadata={"order_id": str(order.id), "buyer_id": order.buyer_id},
            payment_method_id=payment_method_id,
        )
    except GatewayUnavailable as e:
        await compensate_checkout(db, order, f"Payment gateway unavailable: {e.message}", now=now)
        raise DependencyUnavailable(
            "PAYMENT_UNAVAILABLE",
            "We couldn't reach the payment provider. Please try again.",
        )
    except PaymentDeclined as e:
        await compensate_checkout(db, order, f"Payment declined: {e.decline_code}", now=now)
        raise ServiceError(
            "PAYMENT_FAILED", e.message, 402, decline_code=e.decline_code
        )
    except GatewayError as e:
        await compensate_checkout(db, order, f"Payment error: {e.message}", now=now)
        raise ServiceError("PAYMENT_FAILED", e.message, 402)

    intent_status = IntentStatus(intent.status)
    record = await _intent_for_order(db, order.id)
    if record is not None:
        # A webhook for this intent landed first and already applied it.
        record.client_secret = intent.client_secret
        await db.commit()
        await db.refresh(order)
        return CheckoutResult(
            order_id=order.id,
            status=order.status,
            payment_status=order.payment_status,
            amount_charged_cents=order.total_cents,
            credits_redeemed_cents=order.credits_redeemed_cents,
            client_secret=intent.client_secret,
        )

    record = PaymentIntentRecord(
        order_id=order.id,
        provider_intent_id=intent.intent_id,
        client_secret=intent.client_secret,
        amount_cents=order.total_cents,
        status=intent_status,
    )
    db.add(record)

    if intent_status == IntentStatus.FAILED:
        await db.flush()
        await compensate_checkout(db, order, "Payment failed", now=now)
        raise ServiceError("PAYMENT_FAILED", "Payment failed", 402)

    order.payment_status = _INTENT_TO_PAYMENT_STATUS[intent_status]
    if intent_status == IntentStatus.SUCCEEDED:
        await finalize_order(db, order, now=now)
    await db.commit()

    return CheckoutResult(
        order_id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        amount_charged_cents=order.total_cents,
        credits_redeemed_cents=order.credits_redeemed_cents,
        client_secret=intent.client_secret,
    )


# ============================================================================
# FINALIZE / COMPENSATE
# ============================================================================


async def finalize_order(
    db: AsyncSession, order: Order, now: Optional[datetime] = None
) -> bool:
    """pending_payment → confirmed, clear the cart. Idempotent.

    Does not commit. Returns False when the order was not pending.
    """
    if order.status != OrderStatus.PENDING_PAYMENT:
        return False

    transition(order, OrderStatus.CONFIRMED, now)
    if order.payment_status not in (PaymentStatus.NONE, PaymentStatus.SUCCEEDED):
        order.payment_status = PaymentStatus.SUCCEEDED

    if order.cart_id is not None:
        await db.execute(delete(CartItem).where(CartItem.cart_id == order.cart_id))
        await release_cart(db, order)

    notify(
        "order_confirmed",
        order.buyer_id,
        {
            "order_id": str(order.id),
            "delivery_date": order.delivery_date.isoformat(),
            "total": order.total_cents / 100,
        },
    )
    return True


async def refund_redeemed_credits(db: AsyncSession, order: Order, now: datetime) -> None:
    if order.credits_redeemed_cents > 0 and order.credits_refunded_at is None:
        await credits.refund_order_credits(
            db,
            consumer_id=order.buyer_id,
            order_id=order.id,
            amount_cents=order.credits_redeemed_cents,
            now=now,
        )
        order.credits_refunded_at = now


async def _cancel_payouts(db: AsyncSession, order: Order, now: datetime) -> None:
    await cancel_order_payouts(db, order.id)


async def _cancel_order(db: AsyncSession, order: Order, now: datetime) -> None:
    if order.status != OrderStatus.CANCELLED:
        transition(order, OrderStatus.CANCELLED, now)


async def _restore_inventory(db: AsyncSession, order: Order, now: datetime) -> None:
    await inventory.restore_order_inventory(db, order, now)


async def _release_cart_step(db: AsyncSession, order: Order, now: datetime) -> None:
    await release_cart(db, order)


# Reverse of the forward steps. Every step is safe to run twice.
COMPENSATIONS = (
    ("refund_credits", refund_redeemed_credits),
    ("cancel_payouts", _cancel_payouts),
    ("cancel_order", _cancel_order),
    ("restore_inventory", _restore_inventory),
    ("release_cart", _release_cart_step),
)


async def compensate_checkout(
    db: AsyncSession,
    order: Order,
    reason: str,
    now: Optional[datetime] = None,
    payment_status: PaymentStatus = PaymentStatus.FAILED,
) -> None:
    """Undo a pending checkout and commit. Only valid before confirmation."""
    now = now or utc_now()
    if order.status not in (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED):
        raise Conflict(
            "INVALID_STATUS",
            f"Cannot compensate an order in status {order.status.value}",
        )

    for name, step in COMPENSATIONS:
        logger.info("Compensating order %s: %s", order.id, name)
        await step(db, order, now)

    order.cancellation_reason = order.cancellation_reason or reason
    order.payment_status = payment_status
    await db.commit()
    logger.warning("Checkout for order %s compensated: %s", order.id, reason)
