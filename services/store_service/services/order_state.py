"""Order lifecycle.

    pending_payment → confirmed → locked → in_batch → delivered
           └────────────┴──────────┴──→ cancelled

Transitions only move forward. Status changes go through ``transition`` or
the set-based ``lock_orders_for_date`` and ``mark_in_batch``, which only
match rows in the expected source status. An illegal move is refused with
INVALID_STATUS rather than silently applied.
"""

import uuid
from datetime import date, datetime
from typing import Optional, Sequence

from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict
from libs.common.logging import get_logger
from services.store_service.models import Order, OrderStatus
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset(
        {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    ),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.LOCKED, OrderStatus.CANCELLED}),
    OrderStatus.LOCKED: frozenset({OrderStatus.IN_BATCH, OrderStatus.CANCELLED}),
    OrderStatus.IN_BATCH: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset(
    status
    for status, targets in ALLOWED_TRANSITIONS.items()
    if OrderStatus.CANCELLED in targets
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition(order: Order, target: OrderStatus, now: Optional[datetime] = None) -> None:
    """Move an order to ``target`` or raise INVALID_STATUS."""
    if not can_transition(order.status, target):
        raise Conflict(
            "INVALID_STATUS",
            f"Order cannot move from {order.status.value} to {target.value}",
            current_status=order.status.value,
        )

    now = now or utc_now()
    previous = order.status
    order.status = target
    if target == OrderStatus.CONFIRMED:
        order.confirmed_at = now
    elif target == OrderStatus.DELIVERED:
        order.delivered_at = now
    elif target == OrderStatus.CANCELLED:
        order.cancelled_at = now

    logger.info("Order %s: %s → %s", order.id, previous.value, target.value)


async def lock_orders_for_date(
    db: AsyncSession,
    delivery_date: date,
    zip_codes: Optional[Sequence[str]] = None,
) -> int:
    """Freeze confirmed orders for a delivery date once ordering has closed."""
    stmt = update(Order).where(
        Order.delivery_date == delivery_date,
        Order.status == OrderStatus.CONFIRMED,
    )
    if zip_codes is not None:
        stmt = stmt.where(Order.zip_code.in_(list(zip_codes)))
    result = await db.execute(
        stmt
        .values(status=OrderStatus.LOCKED, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Locked %d orders for %s", result.rowcount, delivery_date)
    return result.rowcount


async def mark_in_batch(
    db: AsyncSession, order_ids: list[uuid.UUID], batch_id: uuid.UUID
) -> int:
    """locked → in_batch for the given orders. Returns how many moved."""
    result = await db.execute(
        update(Order)
        .where(Order.id.in_(order_ids), Order.status == OrderStatus.LOCKED)
        .values(status=OrderStatus.IN_BATCH, batch_id=batch_id, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
