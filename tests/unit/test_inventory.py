"""Unit tests for the inventory ledger."""

import asyncio

import pytest
from libs.common.errors import Conflict, ServiceError
from services.store_service.models import OrderItem, OrderStatus, Product
from services.store_service.services import inventory
from tests.conftest import reload
from tests.factories import OrderFactory, ProductFactory


async def _product(db, available=5) -> Product:
    product = ProductFactory.create(available_quantity=available)
    db.add(product)
    await db.commit()
    return product


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_decrements_stock(db_session, session_factory):
    product = await _product(db_session, available=5)

    result = await inventory.reserve(db_session, product.id, 3)
    await db_session.commit()

    assert result.old_quantity == 5
    assert result.new_quantity == 2
    assert (await reload(session_factory, Product, product.id)).available_quantity == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_more_than_available_is_refused(db_session, session_factory):
    product = await _product(db_session, available=2)

    with pytest.raises(Conflict) as exc:
        await inventory.reserve(db_session, product.id, 3, product_name="Kale")
    await db_session.rollback()

    assert exc.value.code == "INSUFFICIENT_INVENTORY"
    assert exc.value.detail["products"][0]["name"] == "Kale"
    assert (await reload(session_factory, Product, product.id)).available_quantity == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reserve_rejects_non_positive_quantity(db_session):
    product = await _product(db_session)

    with pytest.raises(ServiceError) as exc:
        await inventory.reserve(db_session, product.id, 0)

    assert exc.value.code == "VALIDATION_ERROR"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_reservations_never_oversell(db_session, session_factory):
    """Ten buyers race for five units: five win, stock ends at zero."""
    product = await _product(db_session, available=5)

    async def _reserve_one():
        async with session_factory() as session:
            try:
                await inventory.reserve(session, product.id, 1)
            except Conflict:
                await session.rollback()
                return False
            await session.commit()
            return True

    outcomes = await asyncio.gather(*(_reserve_one() for _ in range(10)))

    assert outcomes.count(True) == 5
    assert (await reload(session_factory, Product, product.id)).available_quantity == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_inventory_is_restored_only_once(db_session, session_factory):
    product = await _product(db_session, available=1)
    order = OrderFactory.create(status=OrderStatus.CANCELLED)
    order.items = [
        OrderItem(
            product_id=product.id,
            seller_id=product.seller_id,
            product_name=product.name,
            quantity=4,
            unit_price_cents=product.unit_price_cents,
            subtotal_cents=4 * product.unit_price_cents,
        )
    ]
    db_session.add(order)
    await db_session.commit()

    first = await inventory.restore_order_inventory(db_session, order)
    await db_session.commit()
    second = await inventory.restore_order_inventory(db_session, order)
    await db_session.commit()

    assert first is True
    assert second is False
    assert order.inventory_restored_at is not None
    assert (await reload(session_factory, Product, product.id)).available_quantity == 5
