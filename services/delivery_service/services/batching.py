"""Batch generation: turn a day's locked orders into claimable routes."""

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Protocol, Sequence

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict
from libs.common.logging import get_logger
from libs.db.job_lock import single_flight
from services.delivery_service.models import DeliveryBatch, Stop
from services.store_service.models import MarketConfig, Order, OrderStatus
from services.store_service.services.order_state import mark_in_batch
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class RouteSequencer(Protocol):
    def sequence(self, orders: Sequence[Order]) -> list[Order]: ...


class ZipStreetSequencer:
    """Default ordering: ZIP, then street address."""

    def sequence(self, orders: Sequence[Order]) -> list[Order]:
        return sorted(
            orders,
            key=lambda o: (o.zip_code, (o.street_address or "").lower(), str(o.id)),
        )


@dataclass(frozen=True)
class BatchLimits:
    min_size: int
    target_size: int
    max_size: int


@dataclass
class BatchGenerationResult:
    delivery_date: date
    batch_ids: list[uuid.UUID] = field(default_factory=list)
    orders_batched: int = 0
    subsidized_batches: int = 0


def limits_for(market: Optional[MarketConfig]) -> BatchLimits:
    settings = get_settings()
    if market is None:
        return BatchLimits(
            settings.BATCH_MIN_SIZE, settings.BATCH_TARGET_SIZE, settings.BATCH_MAX_SIZE
        )
    return BatchLimits(
        market.batch_min_size or settings.BATCH_MIN_SIZE,
        market.batch_target_size or settings.BATCH_TARGET_SIZE,
        market.batch_max_size or settings.BATCH_MAX_SIZE,
    )


def plan_batch_sizes(n: int, limits: BatchLimits) -> list[int]:
    """Split ``n`` orders into near-equal batches.

    Start from enough batches to hit the target size without exceeding the
    max, then merge while batches would be under the minimum and one fewer
    batch still fits under the max. Sizes differ by at most one.
    """
    if n <= 0:
        return []
    k = max(math.ceil(n / limits.target_size), math.ceil(n / limits.max_size))
    while k > 1 and n // k < limits.min_size and math.ceil(n / (k - 1)) <= limits.max_size:
        k -= 1
    base, extra = divmod(n, k)
    return [base + 1] * extra + [base] * (k - extra)


def box_code_for(batch_number: int, sequence: int) -> str:
    return f"B{batch_number}-{sequence}"


def _collection_stop(market: Optional[MarketConfig]) -> Stop:
    return Stop(
        sequence=0,
        is_collection_point=True,
        recipient_name=market.collection_point_name if market else None,
        street_address=market.collection_point_address if market else None,
        city=market.collection_point_city if market else None,
        state=market.collection_point_state if market else None,
        zip_code=market.zip_code if market else None,
    )


async def generate_batches(
    db: AsyncSession,
    delivery_date: date,
    sequencer: Optional[RouteSequencer] = None,
    now: Optional[datetime] = None,
) -> BatchGenerationResult:
    """Batch every locked, unbatched order for ``delivery_date``.

    Single-flight per date. Running it again after success is a no-op since
    batched orders are no longer ``locked``.
    """
    now = now or utc_now()
    sequencer = sequencer or ZipStreetSequencer()
    result = BatchGenerationResult(delivery_date=delivery_date)

    async with single_flight(
        db, f"generate_batches:{delivery_date.isoformat()}", ttl=timedelta(minutes=10), now=now
    ):
        rows = await db.execute(
            select(Order)
            .where(
                Order.delivery_date == delivery_date,
                Order.status == OrderStatus.LOCKED,
                Order.batch_id.is_(None),
            )
            .order_by(Order.zip_code, Order.created_at)
        )
        orders = list(rows.scalars().all())
        if not orders:
            logger.info("No locked orders to batch for %s", delivery_date)
            return result

        by_zip: dict[str, list[Order]] = {}
        for order in orders:
            by_zip.setdefault(order.zip_code, []).append(order)

        market_rows = await db.execute(
            select(MarketConfig).where(MarketConfig.zip_code.in_(list(by_zip)))
        )
        markets = {m.zip_code: m for m in market_rows.scalars().all()}

        last_number = await db.scalar(
            select(func.max(DeliveryBatch.batch_number)).where(
                DeliveryBatch.delivery_date == delivery_date
            )
        )
        batch_number = last_number or 0

        for zip_code in sorted(by_zip):
            market = markets.get(zip_code)
            limits = limits_for(market)
            ordered = sequencer.sequence(by_zip[zip_code])
            offset = 0
            for size in plan_batch_sizes(len(ordered), limits):
                chunk = ordered[offset : offset + size]
                offset += size
                batch_number += 1

                batch = DeliveryBatch(
                    id=uuid.uuid4(),
                    delivery_date=delivery_date,
                    zip_code=zip_code,
                    batch_number=batch_number,
                    is_subsidized=size < limits.min_size,
                    created_at=now,
                )
                batch.stops.append(_collection_stop(market))
                for sequence, order in enumerate(chunk, start=1):
                    code = box_code_for(batch_number, sequence)
                    order.box_code = code
                    batch.stops.append(
                        Stop(
                            order_id=order.id,
                            sequence=sequence,
                            box_code=code,
                            recipient_name=order.recipient_name,
                            street_address=order.street_address,
                            city=order.city,
                            state=order.state,
                            zip_code=order.zip_code,
                        )
                    )
                db.add(batch)
                await db.flush()

                moved = await mark_in_batch(db, [o.id for o in chunk], batch.id)
                if moved != len(chunk):
                    # An order was cancelled underneath us; start over next run.
                    await db.rollback()
                    raise Conflict(
                        "ORDERS_CHANGED",
                        "Orders changed while batching. Please retry.",
                    )

                result.batch_ids.append(batch.id)
                result.orders_batched += size
                if batch.is_subsidized:
                    result.subsidized_batches += 1
                logger.info(
                    "Batch B%d for %s/%s: %d orders%s",
                    batch_number,
                    zip_code,
                    delivery_date,
                    size,
                    " (subsidized)" if batch.is_subsidized else "",
                )

        await db.commit()

    logger.info(
        "Generated %d batches (%d orders) for %s",
        len(result.batch_ids),
        result.orders_batched,
        delivery_date,
    )
    return result
