"""Driver-side batch lifecycle: claim, then work the stops in order.

    batch:  pending → assigned → in_progress → completed
    stop:   pending → in_progress → delivered
"""

import uuid
from datetime import date, datetime
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.emails.client import notify
from libs.common.errors import Conflict, NotFound
from libs.common.logging import get_logger
from libs.common.rate_limit import CLAIM_ROUTE, check_rate_limit
from services.delivery_service.models import (
    BatchStatus,
    DeliveryBatch,
    DeliveryScanLog,
    ScanType,
    Stop,
    StopStatus,
)
from services.delivery_service.services.address_gate import (
    BatchView,
    StopView,
    can_view_batch,
    load_batch,
    present_batch,
    present_stop,
)
from services.payments_service.services.payouts import assign_tip_recipient
from services.store_service.models import Order, OrderStatus
from services.store_service.services.order_state import transition
from services.wallet_service.services.credits import award_order_credits
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

ACTIVE_BATCH_STATUSES = (BatchStatus.ASSIGNED, BatchStatus.IN_PROGRESS)


async def list_available_batches(
    db: AsyncSession, delivery_date: Optional[date] = None
) -> list[DeliveryBatch]:
    """Unclaimed batches. Drivers see no addresses here, only ZIP and size."""
    query = (
        select(DeliveryBatch)
        .where(
            DeliveryBatch.status == BatchStatus.PENDING,
            DeliveryBatch.driver_id.is_(None),
        )
        .order_by(DeliveryBatch.delivery_date, DeliveryBatch.batch_number)
    )
    if delivery_date is not None:
        query = query.where(DeliveryBatch.delivery_date == delivery_date)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_consumer_stops(db: AsyncSession, batch_ids: list[uuid.UUID]) -> dict:
    if not batch_ids:
        return {}
    result = await db.execute(
        select(Stop.batch_id, func.count(Stop.id))
        .where(Stop.batch_id.in_(batch_ids), Stop.is_collection_point.is_(False))
        .group_by(Stop.batch_id)
    )
    return {batch_id: count for batch_id, count in result.all()}


async def list_driver_batches(db: AsyncSession, driver: AuthUser) -> list[DeliveryBatch]:
    result = await db.execute(
        select(DeliveryBatch)
        .where(DeliveryBatch.driver_id == driver.user_id)
        .order_by(DeliveryBatch.delivery_date.desc(), DeliveryBatch.batch_number)
    )
    return list(result.scalars().all())


async def claim_batch(
    db: AsyncSession,
    batch_id: uuid.UUID,
    driver: AuthUser,
    now: Optional[datetime] = None,
) -> BatchView:
    """Assign a pending batch to ``driver``. Exactly one concurrent claim wins."""
    now = now or utc_now()
    await check_rate_limit(CLAIM_ROUTE, driver.user_id)

    claimed = await db.execute(
        update(DeliveryBatch)
        .where(
            DeliveryBatch.id == batch_id,
            DeliveryBatch.status == BatchStatus.PENDING,
            DeliveryBatch.driver_id.is_(None),
        )
        .values(driver_id=driver.user_id, status=BatchStatus.ASSIGNED, assigned_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        exists = await db.scalar(select(DeliveryBatch.id).where(DeliveryBatch.id == batch_id))
        if exists is None:
            raise NotFound("BATCH_NOT_FOUND", "Batch not found")
        raise Conflict("BATCH_UNAVAILABLE", "This batch has already been claimed")

    order_rows = await db.execute(
        select(Stop.order_id).where(Stop.batch_id == batch_id, Stop.order_id.is_not(None))
    )
    order_ids = [row[0] for row in order_rows.all()]
    tips = await assign_tip_recipient(db, order_ids, driver.user_id)
    await db.commit()

    logger.info(
        "Batch %s claimed by %s (%d orders, %d tip payouts)",
        batch_id,
        driver.user_id,
        len(order_ids),
        tips,
    )
    batch = await load_batch(db, batch_id)
    return present_batch(batch, driver)


# ---------------------------------------------------------------------------
# Stops
# ---------------------------------------------------------------------------


async def _load_stop(
    db: AsyncSession, batch_id: uuid.UUID, stop_id: uuid.UUID, driver: AuthUser
) -> tuple[DeliveryBatch, Stop]:
    # Status columns move through set-based UPDATEs; never trust cached rows.
    batch = await db.get(DeliveryBatch, batch_id, populate_existing=True)
    if batch is None or not can_view_batch(batch, driver):
        raise NotFound("BATCH_NOT_FOUND", "Batch not found")
    stop = await db.get(Stop, stop_id, populate_existing=True)
    if stop is None or stop.batch_id != batch.id:
        raise NotFound("STOP_NOT_FOUND", "Stop not found")
    if batch.status not in ACTIVE_BATCH_STATUSES:
        raise Conflict(
            "INVALID_STATUS",
            f"Batch is {batch.status.value}",
            current_status=batch.status.value,
        )
    if stop.status == StopStatus.DELIVERED:
        raise Conflict("INVALID_STATUS", "Stop already delivered", current_status="delivered")
    return batch, stop


async def _ensure_in_sequence(db: AsyncSession, stop: Stop) -> None:
    if stop.is_collection_point:
        return
    earlier = await db.scalar(
        select(func.min(Stop.sequence)).where(
            Stop.batch_id == stop.batch_id,
            Stop.is_collection_point.is_(False),
            Stop.sequence < stop.sequence,
            Stop.status == StopStatus.PENDING,
        )
    )
    if earlier is not None:
        raise Conflict(
            "OUT_OF_SEQUENCE",
            f"Stop {earlier} must be started before stop {stop.sequence}",
            next_sequence=earlier,
        )


async def start_stop(
    db: AsyncSession,
    batch_id: uuid.UUID,
    stop_id: uuid.UUID,
    driver: AuthUser,
    now: Optional[datetime] = None,
) -> StopView:
    batch, stop = await _load_stop(db, batch_id, stop_id, driver)
    await _ensure_in_sequence(db, stop)

    if stop.status == StopStatus.PENDING:
        stop.status = StopStatus.IN_PROGRESS
    if batch.status == BatchStatus.ASSIGNED:
        batch.status = BatchStatus.IN_PROGRESS
    await db.commit()
    return present_stop(stop, driver)


async def deliver_stop(
    db: AsyncSession,
    batch_id: uuid.UUID,
    stop_id: uuid.UUID,
    driver: AuthUser,
    now: Optional[datetime] = None,
) -> StopView:
    """Mark a stop delivered and deliver its order.

    Credits for the order are awarded in a savepoint; a failure there is
    logged and left for the retry job, never undoing the delivery.
    """
    now = now or utc_now()
    batch, stop = await _load_stop(db, batch_id, stop_id, driver)
    await _ensure_in_sequence(db, stop)

    marked = await db.execute(
        update(Stop)
        .where(Stop.id == stop.id, Stop.status != StopStatus.DELIVERED)
        .values(status=StopStatus.DELIVERED, delivered_at=now)
        .execution_options(synchronize_session=False)
    )
    if marked.rowcount != 1:
        await db.rollback()
        raise Conflict("INVALID_STATUS", "Stop already delivered", current_status="delivered")

    order = None
    if stop.order_id is not None:
        order = await db.get(Order, stop.order_id, populate_existing=True)
        if order is not None and order.status == OrderStatus.IN_BATCH:
            transition(order, OrderStatus.DELIVERED, now)

        db.add(
            DeliveryScanLog(
                batch_id=batch.id,
                stop_id=stop.id,
                order_id=stop.order_id,
                driver_id=driver.user_id,
                box_code=stop.box_code,
                scan_type=ScanType.DELIVERED,
                scanned_at=now,
            )
        )
        await db.flush()
        if order is not None and order.status == OrderStatus.DELIVERED:
            await award_order_credits(db, order)

    remaining = await db.scalar(
        select(func.count(Stop.id)).where(
            Stop.batch_id == batch.id,
            Stop.is_collection_point.is_(False),
            Stop.status != StopStatus.DELIVERED,
        )
    )
    if batch.status == BatchStatus.ASSIGNED:
        batch.status = BatchStatus.IN_PROGRESS
    if not remaining:
        batch.status = BatchStatus.COMPLETED
        batch.completed_at = now
        logger.info("Batch %s completed", batch.id)

    await db.commit()
    await db.refresh(stop)

    if order is not None:
        notify("order_delivered", order.buyer_id, {"order_id": str(order.id)})
    logger.info("Stop %s (#%d) of batch %s delivered", stop.id, stop.sequence, batch.id)
    return present_stop(stop, driver)
