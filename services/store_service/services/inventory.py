"""Inventory ledger: atomic reserve/restore of ``products.available_quantity``.

Every change is a single conditional UPDATE, never a read followed by a
write, so concurrent checkouts cannot oversell. The table's CHECK
constraint (``available_quantity >= 0``) backs this up for any other path.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict, ValidationFailed, log_integrity_violation
from libs.common.logging import get_logger
from services.store_service.models import Order, OrderItem, Product
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReservationResult:
    product_id: uuid.UUID
    new_quantity: int
    old_quantity: int


def _insufficient(product_id: uuid.UUID, name: Optional[str], requested: int) -> Conflict:
    label = name or str(product_id)
    return Conflict(
        "INSUFFICIENT_INVENTORY",
        f"Not enough stock for {label}",
        products=[{"product_id": str(product_id), "name": name, "requested": requested}],
    )


async def reserve(
    db: AsyncSession,
    product_id: uuid.UUID,
    qty: int,
    product_name: Optional[str] = None,
) -> ReservationResult:
    """Decrement available quantity by ``qty`` or fail INSUFFICIENT_INVENTORY.

    Runs inside the caller's transaction; the caller commits or rolls back.
    """
    if qty <= 0:
        raise ValidationFailed("Quantity must be positive", product_id=str(product_id))

    try:
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id, Product.available_quantity >= qty)
            .values(available_quantity=Product.available_quantity - qty)
            .returning(Product.available_quantity)
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        log_integrity_violation(
            "Inventory reservation violated non-negative constraint",
            product_id=str(product_id),
            qty=qty,
        )
        raise

    new_quantity = result.scalar_one_or_none()
    if new_quantity is None:
        logger.info("Reservation of %d x %s refused: insufficient stock", qty, product_id)
        raise _insufficient(product_id, product_name, qty)

    return ReservationResult(
        product_id=product_id, new_quantity=new_quantity, old_quantity=new_quantity + qty
    )


async def restore(db: AsyncSession, product_id: uuid.UUID, qty: int) -> int:
    """Put ``qty`` units back. Returns the new available quantity."""
    if qty <= 0:
        raise ValidationFailed("Quantity must be positive", product_id=str(product_id))
    result = await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(available_quantity=Product.available_quantity + qty)
        .returning(Product.available_quantity)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one()


async def restore_order_inventory(
    db: AsyncSession, order: Order, now: Optional[datetime] = None
) -> bool:
    """Return an order's reserved units to stock, once.

    The order is claimed by setting ``inventory_restored_at`` only where it is
    still null; a second caller (retry, duplicate webhook) matches no row and
    restores nothing. Returns whether this call did the restore.
    """
    now = now or utc_now()
    claim = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.inventory_restored_at.is_(None))
        .values(inventory_restored_at=now)
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        logger.info("Inventory for order %s already restored", order.id)
        return False

    items = await db.execute(select(OrderItem).where(OrderItem.order_id == order.id))
    for item in items.scalars().all():
        await restore(db, item.product_id, item.quantity)

    order.inventory_restored_at = now
    logger.info("Restored inventory for order %s", order.id)
    return True
