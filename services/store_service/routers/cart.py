"""Store cart router: cart operations and buyer profile."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.models import Cart
from services.store_service.schemas import (
    BuyerProfileResponse,
    BuyerProfileUpdate,
    CartItemCreate,
    CartItemResponse,
    CartResponse,
)
from services.store_service.services import cart as cart_service
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


def _cart_to_response(cart: Cart) -> CartResponse:
    return CartResponse(
        id=cart.id,
        buyer_id=cart.buyer_id,
        active_order_id=cart.active_order_id,
        items=[CartItemResponse.model_validate(item) for item in cart.items],
        subtotal_cents=cart_service.cart_subtotal(cart),
    )


# ============================================================================
# CART
# ============================================================================


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return _cart_to_response(await cart_service.get_or_create_cart(db, current_user.user_id))


@router.post("/cart/items", response_model=CartResponse)
async def add_cart_item(
    item_in: CartItemCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.add_item(
        db, current_user.user_id, item_in.product_id, item_in.quantity
    )
    return _cart_to_response(cart)


@router.delete("/cart/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_service.remove_item(db, current_user.user_id, item_id)
    return _cart_to_response(cart)


# ============================================================================
# PROFILE
# ============================================================================


@router.get("/profile/me", response_model=BuyerProfileResponse)
async def get_my_profile(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await cart_service.get_profile(db, current_user.user_id)


@router.put("/profile/me", response_model=BuyerProfileResponse)
async def update_my_profile(
    profile_in: BuyerProfileUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await cart_service.update_profile(db, current_user.user_id, profile_in)
