"""Unit tests for the checkout saga.

Each test seeds a market, a buyer profile and a filled cart, then calls
``checkout`` directly against the in-memory payment gateway.
"""

import asyncio
from datetime import timedelta

import pytest
from libs.common.datetime_utils import order_cutoff, utc_now
from libs.common.errors import ServiceError
from services.payments_service.models import (
    PaymentIntentRecord,
    Payout,
    PayoutStatus,
    RecipientType,
)
from services.store_service.models import (
    BuyerProfile,
    Cart,
    CartItem,
    Order,
    OrderStatus,
    PaymentStatus,
    Product,
)
from services.store_service.services.checkout import checkout
from services.wallet_service.models import CreditTransactionType
from services.wallet_service.services import credits
from sqlalchemy import func, select
from tests.conftest import reload, seed_marketplace, upcoming_delivery_date
from tests.factories import ALL_WEEKDAYS


async def _payouts(session_factory, order_id):
    async with session_factory() as session:
        result = await session.execute(select(Payout).where(Payout.order_id == order_id))
        return list(result.scalars().all())


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _cart_items(session_factory, cart_id) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(CartItem).where(CartItem.cart_id == cart_id)
        )


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_creates_pending_order_with_client_secret(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 5)])

    result = await checkout(
        db_session,
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        tip_cents=500,
        gateway=fake_gateway,
    )

    assert result.status == OrderStatus.PENDING_PAYMENT
    assert result.payment_status == PaymentStatus.PENDING
    assert result.client_secret
    assert result.amount_charged_cents == 5000 + 750 + 500
    assert result.existing is False

    call = fake_gateway.calls_to("create_payment_intent")[0]
    assert call["amount_cents"] == 6250
    assert call["idempotency_key"] == f"order-{result.order_id}"

    product = await reload(session_factory, Product, seed.product_ids[0])
    assert product.available_quantity == 45

    order = await reload(session_factory, Order, result.order_id)
    assert order.subtotal_cents == 5000
    assert order.street_address == "42 W 24th St"

    cart = await reload(session_factory, Cart, seed.cart_id)
    assert cart.active_order_id == result.order_id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_checkout_confirms_immediately_when_payment_succeeds(
    db_session, session_factory, fake_gateway
):
    fake_gateway.configure(intent_status="succeeded")
    seed = await seed_marketplace(db_session, items=[(1000, 50, 3), (1000, 50, 2)])

    result = await checkout(
        db_session,
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        tip_cents=300,
        gateway=fake_gateway,
    )

    assert result.status == OrderStatus.CONFIRMED
    assert result.payment_status == PaymentStatus.SUCCEEDED
    assert await _cart_items(session_factory, seed.cart_id) == 0
    assert (await reload(session_factory, Cart, seed.cart_id)).active_order_id is None

    payouts = {
        (p.recipient_type, p.recipient_id): p
        for p in await _payouts(session_factory, result.order_id)
    }
    assert payouts[(RecipientType.SELLER, seed.seller_ids[0])].amount_cents == 2640
    assert payouts[(RecipientType.SELLER, seed.seller_ids[1])].amount_cents == 1760
    assert payouts[(RecipientType.COLLECTION_POINT, "farm-collection")].amount_cents == 100
    tip = payouts[(RecipientType.FULFILLER, None)]
    assert tip.amount_cents == 300
    assert all(p.status == PayoutStatus.PENDING for p in payouts.values())

    order = await reload(session_factory, Order, result.order_id)
    assert order.platform_fee_cents == 500
    assert order.confirmed_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credits_covering_the_whole_order_skip_payment(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 3)], credits_cents=10_000)

    result = await checkout(
        db_session,
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        use_credits=True,
        credits_amount_cents=10_000,
        gateway=fake_gateway,
    )

    assert result.status == OrderStatus.CONFIRMED
    assert result.payment_status == PaymentStatus.NONE
    assert result.amount_charged_cents == 0
    assert result.credits_redeemed_cents == 3750
    assert result.client_secret is None
    assert fake_gateway.calls_to("create_payment_intent") == []

    async with session_factory() as session:
        balance = await credits.get_balance(session, seed.buyer_id)
    assert balance.available_cents == 10_000 - 3750


@pytest.mark.asyncio
@pytest.mark.unit
async def test_partial_credits_reduce_the_charge(db_session, session_factory, fake_gateway):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 5)], credits_cents=2000)

    result = await checkout(
        db_session,
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        use_credits=True,
        credits_amount_cents=5000,
        gateway=fake_gateway,
    )

    assert result.credits_redeemed_cents == 2000
    assert result.amount_charged_cents == 5750 - 2000
    assert fake_gateway.calls_to("create_payment_intent")[0]["amount_cents"] == 3750


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credits_with_tip_charge_only_the_remainder(
    db_session, session_factory, fake_gateway
):
    # $50 of produce, $7.50 delivery, $5 tip, $60 of credits: $2.50 left to pay
    seed = await seed_marketplace(db_session, items=[(1000, 50, 5)], credits_cents=6000)

    result = await checkout(
        db_session,
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        tip_cents=500,
        use_credits=True,
        credits_amount_cents=6000,
        gateway=fake_gateway,
    )

    assert result.credits_redeemed_cents == 6000
    assert result.amount_charged_cents == 250
    assert fake_gateway.calls_to("create_payment_intent")[0]["amount_cents"] == 250

    order = await reload(session_factory, Order, result.order_id)
    assert order.credits_redeemed_cents == 6000
    assert order.total_cents == 250

    async with session_factory() as session:
        history = await credits.list_history(session, seed.buyer_id)
        balance = await credits.get_balance(session, seed.buyer_id)
    redemption = history[0]
    assert redemption.transaction_type == CreditTransactionType.REDEEMED
    assert redemption.amount_cents == -6000
    assert redemption.balance_after_cents == 0
    assert balance.available_cents == 0


# ---------------------------------------------------------------------------
# Validation failures leave no trace
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_below_minimum_order_is_rejected_without_side_effects(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 2)])

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            gateway=fake_gateway,
        )
    await db_session.rollback()

    assert exc.value.code == "BELOW_MINIMUM_ORDER"
    assert exc.value.status_code == 400
    assert exc.value.detail["minimum"] == 25.0
    assert exc.value.detail["current"] == 20.0
    assert (await reload(session_factory, Product, seed.product_ids[0])).available_quantity == 50
    assert await _count(session_factory, Order) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_cart_is_rejected(db_session, fake_gateway):
    seed = await seed_marketplace(db_session, items=[])

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            gateway=fake_gateway,
        )

    assert exc.value.code == "CART_EMPTY"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unserved_zip_is_rejected(db_session, fake_gateway):
    seed = await seed_marketplace(db_session, zip_code="10001")
    seed.market.is_active = False
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            gateway=fake_gateway,
        )

    assert exc.value.code == "NO_MARKET_CONFIG"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_past_delivery_date_is_rejected(db_session, fake_gateway):
    seed = await seed_marketplace(db_session)

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=(utc_now() - timedelta(days=1)).date(),
            gateway=fake_gateway,
        )

    assert exc.value.code == "INVALID_DELIVERY_DATE"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delivery_on_a_day_the_market_does_not_serve_is_rejected(
    db_session, fake_gateway
):
    delivery_date = upcoming_delivery_date()
    seed = await seed_marketplace(db_session)
    other_days = [
        day
        for day in ALL_WEEKDAYS
        if day != delivery_date.strftime("%A")
    ]
    seed.market.delivery_days = other_days
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=delivery_date,
            gateway=fake_gateway,
        )

    assert exc.value.code == "INVALID_DELIVERY_DATE"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_after_cutoff_is_rejected(db_session, fake_gateway):
    delivery_date = upcoming_delivery_date()
    seed = await seed_marketplace(db_session)
    cutoff = order_cutoff(delivery_date, "23:59", "America/New_York")

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=delivery_date,
            gateway=fake_gateway,
            now=cutoff + timedelta(seconds=1),
        )

    assert exc.value.code == "CUTOFF_PASSED"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_address_is_rejected(db_session, fake_gateway):
    seed = await seed_marketplace(db_session)
    profile = await db_session.get(BuyerProfile, seed.buyer_id)
    profile.street_address = None
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            gateway=fake_gateway,
        )

    assert exc.value.code == "MISSING_PROFILE_INFO"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_insufficient_stock_rolls_back_every_reservation(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 3), (1000, 1, 2)])

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            gateway=fake_gateway,
        )

    assert exc.value.code == "INSUFFICIENT_INVENTORY"
    assert exc.value.status_code == 409
    assert (await reload(session_factory, Product, seed.product_ids[0])).available_quantity == 50
    assert (await reload(session_factory, Cart, seed.cart_id)).active_order_id is None
    assert await _count(session_factory, Order) == 0


# ---------------------------------------------------------------------------
# Payment failures are compensated
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_declined_card_compensates_every_step(db_session, session_factory, fake_gateway):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 5)], credits_cents=2000)
    fake_gateway.configure(decline_code="card_declined")

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            use_credits=True,
            credits_amount_cents=2000,
            gateway=fake_gateway,
        )

    assert exc.value.code == "PAYMENT_FAILED"
    assert exc.value.status_code == 402
    assert exc.value.detail["decline_code"] == "card_declined"

    async with session_factory() as session:
        order = await session.scalar(select(Order))
        balance = await credits.get_balance(session, seed.buyer_id)
    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.FAILED
    assert order.inventory_restored_at is not None
    assert order.credits_refunded_at is not None
    assert balance.available_cents == 2000

    assert (await reload(session_factory, Product, seed.product_ids[0])).available_quantity == 50
    payouts = await _payouts(session_factory, order.id)
    assert all(p.status == PayoutStatus.CANCELLED for p in payouts)

    # The cart is free again and still holds the items.
    assert (await reload(session_factory, Cart, seed.cart_id)).active_order_id is None
    assert await _cart_items(session_factory, seed.cart_id) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unreachable_gateway_returns_retryable_error(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session)
    fake_gateway.configure(unavailable=True)

    with pytest.raises(ServiceError) as exc:
        await checkout(
            db_session,
            buyer_id=seed.buyer_id,
            cart_id=seed.cart_id,
            delivery_date=upcoming_delivery_date(),
            gateway=fake_gateway,
        )

    assert exc.value.code == "PAYMENT_UNAVAILABLE"
    assert exc.value.status_code == 503
    assert exc.value.detail["retryable"] is True
    assert (await reload(session_factory, Product, seed.product_ids[0])).available_quantity == 50
    assert await _count(session_factory, PaymentIntentRecord) == 0


# ---------------------------------------------------------------------------
# Replays and races
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_repeated_checkout_returns_the_pending_order(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session)
    kwargs = dict(
        buyer_id=seed.buyer_id,
        cart_id=seed.cart_id,
        delivery_date=upcoming_delivery_date(),
        gateway=fake_gateway,
    )

    first = await checkout(db_session, **kwargs)
    second = await checkout(db_session, **kwargs)

    assert second.existing is True
    assert second.order_id == first.order_id
    assert second.client_secret == first.client_secret
    assert await _count(session_factory, Order) == 1
    assert len(fake_gateway.calls_to("create_payment_intent")) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_checkouts_of_one_cart_create_one_order(
    db_session, session_factory, fake_gateway
):
    seed = await seed_marketplace(db_session, items=[(1000, 50, 5)])
    delivery_date = upcoming_delivery_date()

    async def _checkout():
        async with session_factory() as session:
            return await checkout(
                session,
                buyer_id=seed.buyer_id,
                cart_id=seed.cart_id,
                delivery_date=delivery_date,
                gateway=fake_gateway,
            )

    results = await asyncio.gather(_checkout(), _checkout())

    assert results[0].order_id == results[1].order_id
    assert sorted(r.existing for r in results) == [False, True]
    assert await _count(session_factory, Order) == 1
    assert (await reload(session_factory, Product, seed.product_ids[0])).available_quantity == 45
