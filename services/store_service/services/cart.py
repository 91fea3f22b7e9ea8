"""Buyer carts and profiles."""

import uuid

from libs.common.errors import Conflict, NotFound, ServiceError
from services.store_service.models import BuyerProfile, Cart, CartItem, Product
from services.store_service.schemas import BuyerProfileUpdate
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload


async def get_or_create_cart(db: AsyncSession, buyer_id: str) -> Cart:
    query = (
        select(Cart)
        .where(Cart.buyer_id == buyer_id)
        .options(selectinload(Cart.items))
        .execution_options(populate_existing=True)
    )
    cart = (await db.execute(query)).scalar_one_or_none()
    if cart is None:
        db.add(Cart(buyer_id=buyer_id))
        await db.commit()
        cart = (await db.execute(query)).scalar_one()
    return cart


def _ensure_editable(cart: Cart) -> None:
    if cart.active_order_id is not None:
        raise Conflict(
            "CHECKOUT_IN_PROGRESS",
            "Finish or cancel the pending checkout before changing your cart",
            order_id=str(cart.active_order_id),
        )


async def add_item(
    db: AsyncSession, buyer_id: str, product_id: uuid.UUID, quantity: int
) -> Cart:
    """Add ``quantity`` of a product, merging with an existing line."""
    cart = await get_or_create_cart(db, buyer_id)
    _ensure_editable(cart)

    product = await db.get(Product, product_id)
    if product is None or not product.is_active or not product.is_approved:
        raise NotFound("PRODUCT_NOT_FOUND", "Product not found")
    if product.available_quantity < quantity:
        raise ServiceError(
            "INSUFFICIENT_INVENTORY",
            f"Only {product.available_quantity} {product.name} left",
            409,
            available=product.available_quantity,
        )

    existing = next((i for i in cart.items if i.product_id == product_id), None)
    if existing:
        existing.quantity += quantity
        existing.unit_price_cents = product.unit_price_cents
    else:
        db.add(
            CartItem(
                cart_id=cart.id,
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=product.unit_price_cents,
            )
        )
    await db.commit()
    return await get_or_create_cart(db, buyer_id)


async def remove_item(db: AsyncSession, buyer_id: str, item_id: uuid.UUID) -> Cart:
    cart = await get_or_create_cart(db, buyer_id)
    _ensure_editable(cart)
    item = next((i for i in cart.items if i.id == item_id), None)
    if item is None:
        raise NotFound("CART_ITEM_NOT_FOUND", "Cart item not found")
    await db.delete(item)
    await db.commit()
    return await get_or_create_cart(db, buyer_id)


def cart_subtotal(cart: Cart) -> int:
    return sum(item.unit_price_cents * item.quantity for item in cart.items)


async def get_profile(db: AsyncSession, user_id: str) -> BuyerProfile:
    profile = await db.get(BuyerProfile, user_id)
    if profile is None:
        raise NotFound("PROFILE_NOT_FOUND", "Profile not found")
    return profile


async def update_profile(
    db: AsyncSession, user_id: str, data: BuyerProfileUpdate
) -> BuyerProfile:
    profile = await db.get(BuyerProfile, user_id)
    if profile is None:
        profile = BuyerProfile(user_id=user_id)
        db.add(profile)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    await db.commit()
    await db.refresh(profile)
    return profile
