"""Payment processor webhook consumer.

Deliveries are at-least-once and may arrive out of order. Each event id is
recorded in ``webhook_events`` before it is handled; a duplicate of a
completed (or in-flight) event is acknowledged without effect, while a
previously failed event is handled again. Intent status changes only follow
``INTENT_TRANSITIONS``, so a late ``payment_failed`` cannot undo a
``succeeded``.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import ServiceError, log_integrity_violation
from libs.common.logging import get_logger
from services.payments_service.gateway import PaymentGateway, get_gateway
from services.payments_service.gateway.signature import (
    InvalidSignature,
    verify_webhook_signature,
)
from services.payments_service.models import (
    IntentStatus,
    PaymentIntentRecord,
    WebhookEvent,
    WebhookEventStatus,
)
from services.store_service.models import Order, OrderStatus, PaymentStatus
from services.store_service.services.checkout import compensate_checkout, finalize_order
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# An event stuck in "processing" this long is assumed abandoned by a crashed
# worker and may be picked up again.
STALE_PROCESSING_AFTER = timedelta(minutes=5)

INTENT_TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.PENDING: frozenset(
        {
            IntentStatus.REQUIRES_ACTION,
            IntentStatus.SUCCEEDED,
            IntentStatus.FAILED,
            IntentStatus.CANCELED,
        }
    ),
    IntentStatus.REQUIRES_ACTION: frozenset(
        {
            IntentStatus.PENDING,
            IntentStatus.SUCCEEDED,
            IntentStatus.FAILED,
            IntentStatus.CANCELED,
        }
    ),
    IntentStatus.FAILED: frozenset({IntentStatus.PENDING, IntentStatus.SUCCEEDED}),
    IntentStatus.SUCCEEDED: frozenset({IntentStatus.REFUNDED}),
    IntentStatus.CANCELED: frozenset(),
    IntentStatus.REFUNDED: frozenset(),
}


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    duplicate: bool = False
    handled: bool = True


# ---------------------------------------------------------------------------
# Event bookkeeping
# ---------------------------------------------------------------------------


async def _claim_event(
    db: AsyncSession, event_id: str, event_type: str, payload: dict, now: datetime
) -> Optional[WebhookEvent]:
    """Record the event as processing. None means it should be skipped."""
    record = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        status=WebhookEventStatus.PROCESSING,
        payload=payload,
        created_at=now,
    )
    try:
        async with db.begin_nested():
            db.add(record)
        await db.commit()
        return record
    except IntegrityError:
        await db.rollback()

    existing = await db.scalar(select(WebhookEvent).where(WebhookEvent.event_id == event_id))
    if existing is None:
        return None

    reclaimable = existing.status == WebhookEventStatus.FAILED or (
        existing.status == WebhookEventStatus.PROCESSING
        and existing.created_at < now - STALE_PROCESSING_AFTER
    )
    if not reclaimable:
        return None

    # Conditional so two redeliveries of a failed event don't both proceed.
    result = await db.execute(
        update(WebhookEvent)
        .where(
            WebhookEvent.id == existing.id,
            WebhookEvent.status == existing.status,
            WebhookEvent.attempts == existing.attempts,
        )
        .values(
            status=WebhookEventStatus.PROCESSING,
            attempts=existing.attempts + 1,
            error=None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount != 1:
        return None
    await db.refresh(existing)
    logger.info("Reprocessing webhook event %s (attempt %d)", event_id, existing.attempts)
    return existing


async def _mark_event(
    db: AsyncSession,
    record_id: uuid.UUID,
    status: WebhookEventStatus,
    now: datetime,
    error: Optional[str] = None,
) -> None:
    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == record_id)
        .values(status=status, error=error, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


# ---------------------------------------------------------------------------
# Lookup helpers
# ---------------------------------------------------------------------------


async def _find_intent(db: AsyncSession, provider_intent_id: Optional[str]):
    if not provider_intent_id:
        return None
    return await db.scalar(
        select(PaymentIntentRecord).where(
            PaymentIntentRecord.provider_intent_id == provider_intent_id
        )
    )


async def _find_order(
    db: AsyncSession, intent: Optional[PaymentIntentRecord], obj: dict
) -> Optional[Order]:
    if intent is not None:
        return await db.get(Order, intent.order_id)
    order_id = (obj.get("metadata") or {}).get("order_id")
    if not order_id:
        return None
    try:
        return await db.get(Order, uuid.UUID(str(order_id)))
    except ValueError:
        logger.warning("Webhook metadata has malformed order_id %r", order_id)
        return None


def apply_intent_status(
    intent: PaymentIntentRecord, target: IntentStatus, event_id: str
) -> bool:
    """Move the intent to ``target`` if allowed. Returns whether it moved."""
    if intent.status == target:
        return False
    if target not in INTENT_TRANSITIONS[intent.status]:
        logger.info(
            "Ignoring out-of-order transition %s → %s for intent %s (event %s)",
            intent.status.value,
            target.value,
            intent.provider_intent_id,
            event_id,
        )
        return False
    intent.status = target
    intent.last_event_id = event_id
    return True


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _on_succeeded(
    db: AsyncSession,
    gateway: PaymentGateway,
    event_id: str,
    obj: dict,
    now: datetime,
) -> None:
    intent = await _find_intent(db, obj.get("id"))
    order = await _find_order(db, intent, obj)
    if order is None:
        logger.warning("payment_intent.succeeded for unknown order (intent %s)", obj.get("id"))
        return

    if intent is None:
        # Checkout committed the order but died before recording the intent.
        intent = PaymentIntentRecord(
            order_id=order.id,
            provider_intent_id=obj["id"],
            amount_cents=int(obj.get("amount") or order.total_cents),
            status=IntentStatus.PENDING,
        )
        db.add(intent)

    if not apply_intent_status(intent, IntentStatus.SUCCEEDED, event_id):
        await db.commit()
        return

    amount = obj.get("amount")
    if amount is not None and int(amount) != order.total_cents:
        log_integrity_violation(
            "Captured amount differs from order total",
            order_id=str(order.id),
            captured=int(amount),
            expected=order.total_cents,
        )

    if order.status == OrderStatus.CANCELLED:
        # Paid after we gave up on it: hand the money back.
        log_integrity_violation(
            "Payment succeeded for a cancelled order; refunding",
            order_id=str(order.id),
            intent_id=intent.provider_intent_id,
        )
        refund = await gateway.refund(
            intent.provider_intent_id,
            idempotency_key=f"refund-{order.id}",
            reason="duplicate",
        )
        apply_intent_status(intent, IntentStatus.REFUNDED, event_id)
        intent.refund_id = refund.refund_id
        order.payment_status = PaymentStatus.REFUNDED
        await db.commit()
        return

    order.payment_status = PaymentStatus.SUCCEEDED
    await finalize_order(db, order, now)
    await db.commit()
    logger.info("Order %s confirmed by event %s", order.id, event_id)


async def _on_failed(
    db: AsyncSession,
    gateway: PaymentGateway,
    event_id: str,
    obj: dict,
    now: datetime,
    target: IntentStatus = IntentStatus.FAILED,
) -> None:
    intent = await _find_intent(db, obj.get("id"))
    if intent is None:
        logger.warning("%s event for unknown intent %s", target.value, obj.get("id"))
        return
    if not apply_intent_status(intent, target, event_id):
        await db.commit()
        return

    error = obj.get("last_payment_error") or {}
    intent.failure_reason = error.get("message") or target.value

    order = await db.get(Order, intent.order_id)
    if order is not None and order.status == OrderStatus.PENDING_PAYMENT:
        await compensate_checkout(
            db, order, f"Payment {target.value}: {intent.failure_reason}", now=now
        )
        return
    await db.commit()


async def _on_canceled(db, gateway, event_id, obj, now) -> None:
    await _on_failed(db, gateway, event_id, obj, now, target=IntentStatus.CANCELED)


async def _on_requires_action(db, gateway, event_id, obj, now) -> None:
    intent = await _find_intent(db, obj.get("id"))
    if intent is None or not apply_intent_status(
        intent, IntentStatus.REQUIRES_ACTION, event_id
    ):
        await db.commit()
        return
    order = await db.get(Order, intent.order_id)
    if order is not None and order.status == OrderStatus.PENDING_PAYMENT:
        order.payment_status = PaymentStatus.REQUIRES_ACTION
    await db.commit()


async def _on_refunded(db, gateway, event_id, obj, now) -> None:
    intent = await _find_intent(db, obj.get("payment_intent"))
    if intent is None or not apply_intent_status(intent, IntentStatus.REFUNDED, event_id):
        await db.commit()
        return
    intent.refund_id = intent.refund_id or obj.get("id")
    order = await db.get(Order, intent.order_id)
    if order is not None:
        order.payment_status = PaymentStatus.REFUNDED
    await db.commit()


HANDLERS = {
    "payment_intent.succeeded": _on_succeeded,
    "payment_intent.payment_failed": _on_failed,
    "payment_intent.canceled": _on_canceled,
    "payment_intent.requires_action": _on_requires_action,
    "charge.refunded": _on_refunded,
}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_event(payload: bytes, signature_header: Optional[str]) -> dict[str, Any]:
    settings = get_settings()
    try:
        verify_webhook_signature(
            payload,
            signature_header,
            settings.STRIPE_WEBHOOK_SECRET,
            settings.WEBHOOK_TOLERANCE_SECONDS,
        )
    except InvalidSignature as e:
        logger.warning("Rejected webhook: %s", e)
        raise ServiceError("INVALID_SIGNATURE", "Invalid webhook signature", 400)

    try:
        event = json.loads(payload.decode("utf-8"))
    except ValueError:
        raise ServiceError("INVALID_PAYLOAD", "Webhook body is not valid JSON", 400)
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise ServiceError("INVALID_PAYLOAD", "Webhook event is missing id or type", 400)
    return event


async def process_event(
    db: AsyncSession,
    event: dict[str, Any],
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None,
) -> WebhookOutcome:
    """Handle one verified event exactly once."""
    now = now or utc_now()
    gateway = gateway or get_gateway()
    event_id = str(event["id"])
    event_type = str(event["type"])

    record = await _claim_event(db, event_id, event_type, event, now)
    if record is None:
        logger.info("Duplicate webhook event %s (%s) acknowledged", event_id, event_type)
        return WebhookOutcome(event_id, event_type, duplicate=True, handled=False)
    record_id = record.id

    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring unhandled webhook event type %s", event_type)
        await _mark_event(db, record_id, WebhookEventStatus.COMPLETED, now)
        return WebhookOutcome(event_id, event_type, handled=False)

    obj = (event.get("data") or {}).get("object") or {}
    try:
        await handler(db, gateway, event_id, obj, now)
    except Exception as e:
        await db.rollback()
        logger.exception("Webhook event %s (%s) failed", event_id, event_type)
        await _mark_event(db, record_id, WebhookEventStatus.FAILED, now, error=str(e)[:1000])
        raise ServiceError(
            "WEBHOOK_PROCESSING_FAILED",
            "Event could not be processed and will be retried",
            500,
            event_id=event_id,
        )

    await _mark_event(db, record_id, WebhookEventStatus.COMPLETED, now)
    logger.info("Webhook event %s (%s) processed", event_id, event_type)
    return WebhookOutcome(event_id, event_type)


async def handle_webhook(
    db: AsyncSession,
    payload: bytes,
    signature_header: Optional[str],
    gateway: Optional[PaymentGateway] = None,
    now: Optional[datetime] = None,
) -> WebhookOutcome:
    event = parse_event(payload, signature_header)
    return await process_event(db, event, gateway=gateway, now=now)
