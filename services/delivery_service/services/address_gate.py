"""Address visibility gate.

A consumer's street address is hidden from the driver until the driver has
physically loaded that consumer's box: scanning the box code at the
collection point sets ``Stop.address_visible_at``, once. Every read of a stop
address for a driver goes through ``present_stop``.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict, NotFound
from libs.common.logging import get_logger
from libs.common.rate_limit import PICKUP_SCAN, check_rate_limit
from services.delivery_service.models import (
    BatchStatus,
    DeliveryBatch,
    DeliveryScanLog,
    ScanType,
    Stop,
    StopStatus,
)
from services.store_service.models import Order
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)

REDACTED_ADDRESS_MESSAGE = "Address available when delivery is near"


@dataclass(frozen=True)
class StopView:
    id: uuid.UUID
    sequence: int
    status: StopStatus
    is_collection_point: bool
    order_id: Optional[uuid.UUID]
    box_code: Optional[str]
    recipient_name: Optional[str]
    street_address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    zip_code: Optional[str]
    address_redacted: bool
    address_message: Optional[str] = None
    delivered_at: Optional[datetime] = None


@dataclass(frozen=True)
class BatchView:
    id: uuid.UUID
    delivery_date: date
    zip_code: str
    batch_number: int
    status: BatchStatus
    driver_id: Optional[str]
    is_subsidized: bool
    stops: list[StopView] = field(default_factory=list)


def address_visible(stop: Stop, viewer: AuthUser) -> bool:
    return viewer.is_admin or stop.is_collection_point or stop.address_visible_at is not None


def present_stop(stop: Stop, viewer: AuthUser) -> StopView:
    """The only place a stop's address is handed to a caller."""
    visible = address_visible(stop, viewer)
    return StopView(
        id=stop.id,
        sequence=stop.sequence,
        status=stop.status,
        is_collection_point=stop.is_collection_point,
        order_id=stop.order_id,
        box_code=stop.box_code,
        recipient_name=stop.recipient_name,
        street_address=stop.street_address if visible else None,
        city=stop.city if visible else None,
        state=stop.state if visible else None,
        zip_code=stop.zip_code,
        address_redacted=not visible,
        address_message=None if visible else REDACTED_ADDRESS_MESSAGE,
        delivered_at=stop.delivered_at,
    )


def can_view_batch(batch: DeliveryBatch, viewer: AuthUser) -> bool:
    return viewer.is_admin or (
        batch.driver_id is not None and batch.driver_id == viewer.user_id
    )


def present_batch(batch: DeliveryBatch, viewer: AuthUser) -> BatchView:
    """Batch with gated stops. ``batch.stops`` must already be loaded."""
    if not can_view_batch(batch, viewer):
        raise NotFound("BATCH_NOT_FOUND", "Batch not found")
    return BatchView(
        id=batch.id,
        delivery_date=batch.delivery_date,
        zip_code=batch.zip_code,
        batch_number=batch.batch_number,
        status=batch.status,
        driver_id=batch.driver_id,
        is_subsidized=batch.is_subsidized,
        stops=[present_stop(stop, viewer) for stop in batch.stops],
    )


async def load_batch(db: AsyncSession, batch_id: uuid.UUID) -> Optional[DeliveryBatch]:
    result = await db.execute(
        select(DeliveryBatch)
        .where(DeliveryBatch.id == batch_id)
        .options(selectinload(DeliveryBatch.stops))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_batch_view(
    db: AsyncSession, batch_id: uuid.UUID, viewer: AuthUser
) -> BatchView:
    batch = await load_batch(db, batch_id)
    if batch is None:
        raise NotFound("BATCH_NOT_FOUND", "Batch not found")
    return present_batch(batch, viewer)


async def record_pickup_scan(
    db: AsyncSession,
    batch_id: uuid.UUID,
    box_code: str,
    driver: AuthUser,
    now: Optional[datetime] = None,
) -> StopView:
    """Scan a box at the collection point and reveal its stop's address."""
    now = now or utc_now()
    await check_rate_limit(PICKUP_SCAN, driver.user_id)

    batch = await db.get(DeliveryBatch, batch_id, populate_existing=True)
    if batch is None or not can_view_batch(batch, driver):
        raise NotFound("BATCH_NOT_FOUND", "Batch not found")
    if batch.status not in (BatchStatus.ASSIGNED, BatchStatus.IN_PROGRESS):
        raise Conflict(
            "INVALID_STATUS",
            f"Cannot scan boxes for a batch that is {batch.status.value}",
            current_status=batch.status.value,
        )

    code = (box_code or "").strip().upper()
    stop = await db.scalar(
        select(Stop).where(
            Stop.batch_id == batch.id,
            Stop.box_code == code,
            Stop.is_collection_point.is_(False),
        )
    )
    if stop is None:
        logger.info("Unknown box code %r scanned on batch %s", code, batch.id)
        raise NotFound("INVALID_BOX_CODE", "That box code is not on this route")

    db.add(
        DeliveryScanLog(
            batch_id=batch.id,
            stop_id=stop.id,
            order_id=stop.order_id,
            driver_id=driver.user_id,
            box_code=code,
            scan_type=ScanType.LOADED,
            scanned_at=now,
        )
    )
    revealed = await db.execute(
        update(Stop)
        .where(Stop.id == stop.id, Stop.address_visible_at.is_(None))
        .values(address_visible_at=now)
        .execution_options(synchronize_session=False)
    )
    if batch.status == BatchStatus.ASSIGNED:
        batch.status = BatchStatus.IN_PROGRESS
    await db.commit()
    await db.refresh(stop)

    if revealed.rowcount == 1:
        logger.info("Address for stop %s revealed to driver %s", stop.id, driver.user_id)
    return present_stop(stop, driver)


@dataclass(frozen=True)
class AddressView:
    order_id: uuid.UUID
    recipient_name: Optional[str]
    street_address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    zip_code: Optional[str]
    address_redacted: bool
    address_message: Optional[str] = None


async def get_consumer_address(
    db: AsyncSession, order_id: uuid.UUID, viewer: AuthUser
) -> AddressView:
    """Owner and admins see the order's address; drivers only via their stop."""
    order = await db.get(Order, order_id)
    if order is None:
        raise NotFound("ORDER_NOT_FOUND", "Order not found")

    if viewer.is_admin or order.buyer_id == viewer.user_id:
        return AddressView(
            order_id=order.id,
            recipient_name=order.recipient_name,
            street_address=order.street_address,
            city=order.city,
            state=order.state,
            zip_code=order.zip_code,
            address_redacted=False,
        )

    stop = await db.scalar(
        select(Stop)
        .join(DeliveryBatch, DeliveryBatch.id == Stop.batch_id)
        .where(Stop.order_id == order.id, DeliveryBatch.driver_id == viewer.user_id)
    )
    if stop is None:
        raise NotFound("ORDER_NOT_FOUND", "Order not found")

    view = present_stop(stop, viewer)
    return AddressView(
        order_id=order.id,
        recipient_name=view.recipient_name,
        street_address=view.street_address,
        city=view.city,
        state=view.state,
        zip_code=view.zip_code,
        address_redacted=view.address_redacted,
        address_message=view.address_message,
    )
