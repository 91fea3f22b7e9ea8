"""Unit tests for the periodic maintenance tasks."""

from datetime import date, datetime, timedelta, timezone

import pytest
from libs.common.datetime_utils import utc_now
from services.payments_service import tasks
from services.store_service.models import Order, OrderStatus, PaymentStatus, Product
from services.store_service.services.checkout import checkout
from tests.conftest import reload, seed_marketplace, upcoming_delivery_date
from tests.factories import MarketConfigFactory, OrderFactory


async def _stale_checkout(db_session, fake_gateway):
    seed = await seed_marketplace(db_session)
    result = await checkout(
        db_session,
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        gateway=fake_gateway,
    )
    return seed, result.order_id, next(iter(fake_gateway.intents))


# ---------------------------------------------------------------------------
# Stale pending checkouts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unpaid_stale_checkout_is_expired(db_session, session_factory, fake_gateway):
    seed, order_id, intent_id = await _stale_checkout(db_session, fake_gateway)

    counts = await tasks.expire_stale_pending_orders(
        now=utc_now() + timedelta(hours=2),
        session_factory=session_factory,
        gateway=fake_gateway,
    )

    assert counts == {"finalized": 0, "expired": 1, "errors": 0}
    order = await reload(session_factory, Order, order_id)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert (await reload(session_factory, Product, seed.product_ids[0])).available_quantity == 50
    assert fake_gateway.intents[intent_id].status == "canceled"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stale_checkout_paid_at_processor_is_confirmed(
    db_session, session_factory, fake_gateway
):
    _, order_id, intent_id = await _stale_checkout(db_session, fake_gateway)
    fake_gateway.set_intent_status(intent_id, "succeeded")

    counts = await tasks.expire_stale_pending_orders(
        now=utc_now() + timedelta(hours=2),
        session_factory=session_factory,
        gateway=fake_gateway,
    )

    assert counts["finalized"] == 1
    order = await reload(session_factory, Order, order_id)
    assert order.status == OrderStatus.CONFIRMED
    assert order.payment_status == PaymentStatus.SUCCEEDED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_recent_checkouts_are_left_alone(db_session, session_factory, fake_gateway):
    _, order_id, _ = await _stale_checkout(db_session, fake_gateway)

    counts = await tasks.expire_stale_pending_orders(
        session_factory=session_factory, gateway=fake_gateway
    )

    assert counts == {"finalized": 0, "expired": 0, "errors": 0}
    assert (await reload(session_factory, Order, order_id)).status == OrderStatus.PENDING_PAYMENT


@pytest.mark.asyncio
@pytest.mark.unit
async def test_gateway_outage_counts_as_error(db_session, session_factory, fake_gateway):
    _, order_id, _ = await _stale_checkout(db_session, fake_gateway)
    fake_gateway.configure(unavailable=True)

    counts = await tasks.expire_stale_pending_orders(
        now=utc_now() + timedelta(hours=2),
        session_factory=session_factory,
        gateway=fake_gateway,
    )

    assert counts["errors"] == 1
    assert (await reload(session_factory, Order, order_id)).status == OrderStatus.PENDING_PAYMENT


# ---------------------------------------------------------------------------
# Locking and batching
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_orders_lock_once_the_market_cutoff_passes(db_session, session_factory):
    db_session.add_all(
        [
            MarketConfigFactory.create(zip_code="10001", cutoff_time="20:00"),
            MarketConfigFactory.create(
                zip_code="94110", cutoff_time="20:00", timezone="America/Los_Angeles"
            ),
        ]
    )
    due = OrderFactory.create(delivery_date=date(2030, 1, 11), status=OrderStatus.CONFIRMED)
    later = OrderFactory.create(delivery_date=date(2030, 1, 12), status=OrderStatus.CONFIRMED)
    west = OrderFactory.create(
        delivery_date=date(2030, 1, 11), zip_code="94110", status=OrderStatus.CONFIRMED
    )
    db_session.add_all([due, later, west])
    await db_session.commit()

    # 21:00 in New York, 18:00 in San Francisco.
    now = datetime(2030, 1, 11, 2, 0, tzinfo=timezone.utc)
    locked = await tasks.lock_tomorrow_orders(now=now, session_factory=session_factory)

    assert locked == 1
    assert (await reload(session_factory, Order, due.id)).status == OrderStatus.LOCKED
    assert (await reload(session_factory, Order, later.id)).status == OrderStatus.CONFIRMED
    assert (await reload(session_factory, Order, west.id)).status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_generate_tomorrow_batches(db_session, session_factory):
    now = utc_now()
    tomorrow = now.date() + timedelta(days=1)
    db_session.add(MarketConfigFactory.create())
    db_session.add_all(
        [OrderFactory.create(delivery_date=tomorrow, status=OrderStatus.LOCKED) for _ in range(3)]
    )
    db_session.add(
        OrderFactory.create(delivery_date=tomorrow + timedelta(days=5), status=OrderStatus.LOCKED)
    )
    await db_session.commit()

    assert await tasks.generate_tomorrow_batches(now=now, session_factory=session_factory) == 1
    assert await tasks.generate_tomorrow_batches(now=now, session_factory=session_factory) == 0


# ---------------------------------------------------------------------------
# Credit award retries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missed_credit_awards_are_retried_once(db_session, session_factory):
    order = OrderFactory.create(
        status=OrderStatus.DELIVERED,
        subtotal_cents=25_000,
        delivered_at=utc_now(),
    )
    db_session.add(order)
    await db_session.commit()

    assert await tasks.retry_credit_awards(session_factory=session_factory) == 1
    assert await tasks.retry_credit_awards(session_factory=session_factory) == 0
    assert (await reload(session_factory, Order, order.id)).credits_awarded_at is not None
