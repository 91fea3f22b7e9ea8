"""Background maintenance tasks: stale checkouts, credit retries, settlement,
order locking and batch generation."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from libs.common.config import get_settings
from libs.common.datetime_utils import order_cutoff, utc_now
from libs.common.errors import Conflict, ServiceError
from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from services.delivery_service.services.batching import generate_batches
from services.payments_service.gateway import (
    GatewayError,
    PaymentGateway,
    get_gateway,
)
from services.payments_service.models import IntentStatus, PaymentIntentRecord
from services.payments_service.services.payouts import SettlementResult, settle_payouts
from services.payments_service.services.webhooks import apply_intent_status
from services.store_service.models import MarketConfig, Order, OrderStatus, PaymentStatus
from services.store_service.services.checkout import compensate_checkout, finalize_order
from services.store_service.services.order_state import lock_orders_for_date
from services.wallet_service.services.credits import award_order_credits
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

BATCH_LIMIT = 200


async def _resolve_stale_order(
    db: AsyncSession, gateway: PaymentGateway, order: Order, now: datetime
) -> str:
    """Finalize or compensate one stale pending order. Returns the outcome."""
    intent = await db.scalar(
        select(PaymentIntentRecord).where(PaymentIntentRecord.order_id == order.id)
    )
    if intent is not None:
        remote = await gateway.retrieve_payment_intent(intent.provider_intent_id)
        if remote.status == IntentStatus.SUCCEEDED.value:
            apply_intent_status(intent, IntentStatus.SUCCEEDED, "reconciliation")
            order.payment_status = PaymentStatus.SUCCEEDED
            await finalize_order(db, order, now)
            await db.commit()
            return "finalized"

        if remote.status != IntentStatus.CANCELED.value:
            await gateway.cancel_payment_intent(intent.provider_intent_id)
        apply_intent_status(intent, IntentStatus.CANCELED, "reconciliation")

    await compensate_checkout(db, order, "Payment not completed in time", now=now)
    return "expired"


async def expire_stale_pending_orders(
    now: Optional[datetime] = None,
    session_factory: Optional[SessionFactory] = None,
    gateway: Optional[PaymentGateway] = None,
) -> dict[str, int]:
    """Reconcile checkouts stuck in pending_payment past the TTL.

    A checkout whose process died after committing leaves reserved stock
    and redeemed credits behind. If the processor says the payment went
    through, the order is confirmed; otherwise the intent is cancelled and
    the checkout compensated.
    """
    settings = get_settings()
    now = now or utc_now()
    gateway = gateway or get_gateway()
    cutoff = now - timedelta(minutes=settings.PENDING_PAYMENT_TTL_MINUTES)
    counts = {"finalized": 0, "expired": 0, "errors": 0}

    async with (session_factory or AsyncSessionLocal)() as db:
        result = await db.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING_PAYMENT,
                Order.created_at <= cutoff,
            )
            .order_by(Order.created_at.asc())
            .limit(BATCH_LIMIT)
        )
        stale = [order.id for order in result.scalars().all()]

        for order_id in stale:
            order = await db.get(Order, order_id)
            if order is None or order.status != OrderStatus.PENDING_PAYMENT:
                continue
            try:
                outcome = await _resolve_stale_order(db, gateway, order, now)
                counts[outcome] += 1
            except (GatewayError, ServiceError) as exc:
                await db.rollback()
                counts["errors"] += 1
                logger.warning("Could not resolve stale order %s: %s", order_id, exc)

    if stale:
        logger.info(
            "Stale pending orders: %d finalized, %d expired, %d errors",
            counts["finalized"],
            counts["expired"],
            counts["errors"],
        )
    return counts


async def retry_credit_awards(session_factory: Optional[SessionFactory] = None) -> int:
    """Award credits for delivered orders whose award failed earlier."""
    awarded = 0
    async with (session_factory or AsyncSessionLocal)() as db:
        result = await db.execute(
            select(Order)
            .where(
                Order.status == OrderStatus.DELIVERED,
                Order.credits_awarded_at.is_(None),
            )
            .order_by(Order.delivered_at.asc())
            .limit(BATCH_LIMIT)
        )
        for order in result.scalars().all():
            await award_order_credits(db, order)
            await db.commit()
            if order.credits_awarded_at is not None:
                awarded += 1

    if awarded:
        logger.info("Retried credit awards: %d orders", awarded)
    return awarded


async def run_settlement(
    session_factory: Optional[SessionFactory] = None,
    gateway: Optional[PaymentGateway] = None,
) -> Optional[SettlementResult]:
    async with (session_factory or AsyncSessionLocal)() as db:
        try:
            return await settle_payouts(db, gateway or get_gateway())
        except Conflict as exc:
            logger.info("Settlement skipped: %s", exc.detail.get("message"))
            return None


async def lock_tomorrow_orders(
    now: Optional[datetime] = None,
    session_factory: Optional[SessionFactory] = None,
) -> int:
    """Lock orders for each market whose ordering window has closed."""
    now = now or utc_now()
    locked = 0
    async with (session_factory or AsyncSessionLocal)() as db:
        markets = (
            await db.execute(select(MarketConfig).where(MarketConfig.is_active.is_(True)))
        ).scalars().all()

        due: dict[date, list[str]] = {}
        for market in markets:
            tomorrow = now.astimezone(ZoneInfo(market.timezone)).date() + timedelta(days=1)
            if now >= order_cutoff(tomorrow, market.cutoff_time, market.timezone):
                due.setdefault(tomorrow, []).append(market.zip_code)

        for delivery_date, zip_codes in sorted(due.items()):
            locked += await lock_orders_for_date(db, delivery_date, zip_codes)
    return locked


async def generate_tomorrow_batches(
    now: Optional[datetime] = None,
    session_factory: Optional[SessionFactory] = None,
) -> int:
    """Batch locked orders for every delivery date up to tomorrow."""
    now = now or utc_now()
    horizon = now.date() + timedelta(days=1)
    batches = 0
    async with (session_factory or AsyncSessionLocal)() as db:
        dates = (
            await db.execute(
                select(Order.delivery_date)
                .where(
                    Order.status == OrderStatus.LOCKED,
                    Order.batch_id.is_(None),
                    Order.delivery_date <= horizon,
                )
                .distinct()
            )
        ).scalars().all()

        for delivery_date in sorted(dates):
            try:
                result = await generate_batches(db, delivery_date, now=now)
            except Conflict as exc:
                logger.warning(
                    "Batch generation for %s skipped: %s",
                    delivery_date,
                    exc.detail.get("message"),
                )
                continue
            batches += len(result.batch_ids)
    return batches
