"""Unit tests for claiming and working delivery batches."""

import asyncio
import uuid
from datetime import date

import pytest
from libs.common.errors import Conflict, NotFound, ServiceError
from services.delivery_service.models import BatchStatus, DeliveryBatch, Stop, StopStatus
from services.delivery_service.services import address_gate, dispatch
from services.delivery_service.services.batching import generate_batches
from services.payments_service.models import Payout, PayoutKind, RecipientType
from services.store_service.models import Order, OrderStatus
from services.wallet_service.services import credits
from tests.conftest import make_user, reload
from tests.factories import MarketConfigFactory, OrderFactory, PayoutFactory

DELIVERY_DATE = date(2030, 6, 4)
DRIVER = make_user("driver-1", "driver")
OTHER_DRIVER = make_user("driver-2", "driver")


async def _batch(db, count=3, **order_overrides):
    """A generated, unclaimed batch of ``count`` orders."""
    db.add(MarketConfigFactory.create())
    orders = [
        OrderFactory.create(
            delivery_date=DELIVERY_DATE,
            status=OrderStatus.LOCKED,
            street_address=f"{i:02d} Elm St",
            **order_overrides,
        )
        for i in range(1, count + 1)
    ]
    db.add_all(orders)
    await db.commit()
    result = await generate_batches(db, DELIVERY_DATE)
    return result.batch_ids[0], orders


def _consumer_stops(view):
    return [s for s in view.stops if not s.is_collection_point]


# ---------------------------------------------------------------------------
# Claiming
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_only_one_of_two_racing_claims_wins(db_session, session_factory):
    batch_id, _ = await _batch(db_session)

    async def _claim(driver):
        async with session_factory() as session:
            return await dispatch.claim_batch(session, batch_id, driver)

    results = await asyncio.gather(
        _claim(DRIVER), _claim(OTHER_DRIVER), return_exceptions=True
    )

    losers = [r for r in results if isinstance(r, Conflict)]
    winners = [r for r in results if not isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].code == "BATCH_UNAVAILABLE"

    batch = await reload(session_factory, DeliveryBatch, batch_id)
    assert batch.status == BatchStatus.ASSIGNED
    assert batch.driver_id == winners[0].driver_id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_claiming_unknown_batch_is_not_found(db_session):
    with pytest.raises(NotFound) as exc:
        await dispatch.claim_batch(db_session, uuid.uuid4(), DRIVER)

    assert exc.value.code == "BATCH_NOT_FOUND"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_claim_assigns_tip_payouts_to_driver(db_session, session_factory):
    batch_id, orders = await _batch(db_session)
    tip = PayoutFactory.create(
        order_id=orders[0].id,
        recipient_id=None,
        recipient_type=RecipientType.FULFILLER,
        kind=PayoutKind.TIP,
        amount_cents=500,
    )
    db_session.add(tip)
    await db_session.commit()

    await dispatch.claim_batch(db_session, batch_id, DRIVER)

    assert (await reload(session_factory, Payout, tip.id)).recipient_id == "driver-1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_available_batches_exclude_claimed(db_session):
    batch_id, _ = await _batch(db_session)
    assert [b.id for b in await dispatch.list_available_batches(db_session)] == [batch_id]

    await dispatch.claim_batch(db_session, batch_id, DRIVER)

    assert await dispatch.list_available_batches(db_session) == []
    counts = await dispatch.count_consumer_stops(db_session, [batch_id])
    assert counts == {batch_id: 3}


# ---------------------------------------------------------------------------
# Address gate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_addresses_hidden_until_box_is_scanned(db_session, session_factory):
    batch_id, _ = await _batch(db_session)
    view = await dispatch.claim_batch(db_session, batch_id, DRIVER)

    collection = view.stops[0]
    assert collection.is_collection_point is True
    assert collection.street_address == "1 Market St"
    assert all(s.address_redacted for s in _consumer_stops(view))
    assert all(s.street_address is None for s in _consumer_stops(view))

    scanned = await address_gate.record_pickup_scan(db_session, batch_id, " b1-1 ", DRIVER)

    assert scanned.box_code == "B1-1"
    assert scanned.address_redacted is False
    assert scanned.street_address == "01 Elm St"

    view = await address_gate.get_batch_view(db_session, batch_id, DRIVER)
    first, second, third = _consumer_stops(view)
    assert first.street_address == "01 Elm St"
    assert second.address_redacted is True
    assert third.address_redacted is True
    assert view.status == BatchStatus.IN_PROGRESS

    revealed_at = (await reload(session_factory, Stop, first.id)).address_visible_at
    await address_gate.record_pickup_scan(db_session, batch_id, "B1-1", DRIVER)
    assert (await reload(session_factory, Stop, first.id)).address_visible_at == revealed_at


@pytest.mark.asyncio
@pytest.mark.unit
async def test_other_drivers_cannot_see_or_scan_the_batch(db_session):
    batch_id, _ = await _batch(db_session)
    await dispatch.claim_batch(db_session, batch_id, DRIVER)

    with pytest.raises(NotFound) as exc:
        await address_gate.get_batch_view(db_session, batch_id, OTHER_DRIVER)
    assert exc.value.code == "BATCH_NOT_FOUND"

    with pytest.raises(NotFound) as exc:
        await address_gate.record_pickup_scan(db_session, batch_id, "B1-1", OTHER_DRIVER)
    assert exc.value.code == "BATCH_NOT_FOUND"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_sees_full_addresses(db_session):
    batch_id, _ = await _batch(db_session)

    view = await address_gate.get_batch_view(db_session, batch_id, make_user("ops", "admin"))

    assert not any(s.address_redacted for s in view.stops)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_box_code_is_rejected(db_session):
    batch_id, _ = await _batch(db_session)
    await dispatch.claim_batch(db_session, batch_id, DRIVER)

    with pytest.raises(NotFound) as exc:
        await address_gate.record_pickup_scan(db_session, batch_id, "B9-9", DRIVER)

    assert exc.value.code == "INVALID_BOX_CODE"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_driver_can_scan_every_box_of_a_full_batch(db_session):
    db_session.add(
        MarketConfigFactory.create(batch_min_size=8, batch_target_size=20, batch_max_size=20)
    )
    db_session.add_all(
        [
            OrderFactory.create(
                delivery_date=DELIVERY_DATE,
                status=OrderStatus.LOCKED,
                street_address=f"{i:02d} Elm St",
            )
            for i in range(1, 21)
        ]
    )
    await db_session.commit()
    result = await generate_batches(db_session, DELIVERY_DATE)
    assert len(result.batch_ids) == 1
    batch_id = result.batch_ids[0]

    await dispatch.claim_batch(db_session, batch_id, DRIVER)
    for seq in range(1, 21):
        scanned = await address_gate.record_pickup_scan(
            db_session, batch_id, f"B1-{seq}", DRIVER
        )
        assert scanned.address_redacted is False

    view = await address_gate.get_batch_view(db_session, batch_id, DRIVER)
    assert not any(s.address_redacted for s in view.stops)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_consumer_address_by_viewer(db_session):
    batch_id, orders = await _batch(db_session, count=1, buyer_id="buyer-7")
    order_id = orders[0].id
    await dispatch.claim_batch(db_session, batch_id, DRIVER)

    own = await address_gate.get_consumer_address(db_session, order_id, make_user("buyer-7"))
    assert own.street_address == "01 Elm St"

    hidden = await address_gate.get_consumer_address(db_session, order_id, DRIVER)
    assert hidden.address_redacted is True
    assert hidden.street_address is None
    assert hidden.address_message == address_gate.REDACTED_ADDRESS_MESSAGE

    await address_gate.record_pickup_scan(db_session, batch_id, "B1-1", DRIVER)
    shown = await address_gate.get_consumer_address(db_session, order_id, DRIVER)
    assert shown.street_address == "01 Elm St"

    with pytest.raises(NotFound) as exc:
        await address_gate.get_consumer_address(db_session, order_id, OTHER_DRIVER)
    assert exc.value.code == "ORDER_NOT_FOUND"


# ---------------------------------------------------------------------------
# Delivering
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_stops_must_be_delivered_in_order(db_session):
    batch_id, _ = await _batch(db_session)
    view = await dispatch.claim_batch(db_session, batch_id, DRIVER)
    second = _consumer_stops(view)[1]

    with pytest.raises(ServiceError) as exc:
        await dispatch.deliver_stop(db_session, batch_id, second.id, DRIVER)

    assert exc.value.code == "OUT_OF_SEQUENCE"
    assert exc.value.detail["next_sequence"] == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_started_stop_does_not_block_the_next_one(db_session):
    batch_id, _ = await _batch(db_session)
    view = await dispatch.claim_batch(db_session, batch_id, DRIVER)
    first, second, third = _consumer_stops(view)

    await dispatch.start_stop(db_session, batch_id, first.id, DRIVER)
    started = await dispatch.start_stop(db_session, batch_id, second.id, DRIVER)
    delivered = await dispatch.deliver_stop(db_session, batch_id, second.id, DRIVER)

    assert started.status == StopStatus.IN_PROGRESS
    assert delivered.status == StopStatus.DELIVERED

    delivered = await dispatch.deliver_stop(db_session, batch_id, third.id, DRIVER)
    assert delivered.status == StopStatus.DELIVERED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delivering_every_stop_completes_batch_and_awards_credits(
    db_session, session_factory
):
    batch_id, orders = await _batch(db_session, count=2, subtotal_cents=12_000)
    view = await dispatch.claim_batch(db_session, batch_id, DRIVER)

    for stop in _consumer_stops(view):
        await dispatch.start_stop(db_session, batch_id, stop.id, DRIVER)
        delivered = await dispatch.deliver_stop(db_session, batch_id, stop.id, DRIVER)
        assert delivered.status == StopStatus.DELIVERED

    batch = await reload(session_factory, DeliveryBatch, batch_id)
    assert batch.status == BatchStatus.COMPLETED
    assert batch.completed_at is not None

    for order in orders:
        stored = await reload(session_factory, Order, order.id)
        assert stored.status == OrderStatus.DELIVERED
        assert stored.credits_awarded_at is not None
        async with session_factory() as session:
            balance = await credits.get_balance(session, order.buyer_id)
        assert balance.available_cents == 1000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delivered_stop_cannot_be_delivered_again(db_session):
    batch_id, _ = await _batch(db_session, count=2)
    view = await dispatch.claim_batch(db_session, batch_id, DRIVER)
    first = _consumer_stops(view)[0]
    await dispatch.deliver_stop(db_session, batch_id, first.id, DRIVER)

    with pytest.raises(Conflict) as exc:
        await dispatch.deliver_stop(db_session, batch_id, first.id, DRIVER)

    assert exc.value.code == "INVALID_STATUS"
