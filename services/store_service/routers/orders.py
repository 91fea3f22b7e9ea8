"""Store orders router: checkout, order history, cancellation."""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.currency import cents_to_dollars, dollars_to_cents
from libs.common.errors import NotFound
from libs.db.session import get_async_db
from services.store_service.models import Order
from services.store_service.schemas import (
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    OrderResponse,
)
from services.store_service.services.cancellation import cancel_order
from services.store_service.services.checkout import checkout
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

router = APIRouter(tags=["store"])


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    checkout_in: CheckoutRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Turn the caller's cart into an order.

    Returns a ``client_secret`` when the card still has to be confirmed on
    the client; fully credit-paid orders come back already confirmed.
    """
    result = await checkout(
        db,
        buyer_id=current_user.user_id,
        cart_id=checkout_in.cart_id,
        delivery_date=checkout_in.delivery_date,
        use_credits=checkout_in.use_credits,
        credits_amount_cents=dollars_to_cents(checkout_in.credits_amount),
        tip_cents=dollars_to_cents(checkout_in.tip_amount),
        payment_method_id=checkout_in.payment_method_id,
    )
    return CheckoutResponse(
        order_id=result.order_id,
        status=result.status,
        payment_status=result.payment_status,
        client_secret=result.client_secret,
        amount_charged=cents_to_dollars(result.amount_charged_cents),
        amount_charged_cents=result.amount_charged_cents,
        credits_redeemed=cents_to_dollars(result.credits_redeemed_cents),
        credits_redeemed_cents=result.credits_redeemed_cents,
    )


# ============================================================================
# ORDERS
# ============================================================================


async def _load_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@router.get("/orders/me", response_model=List[OrderResponse])
async def list_my_orders(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    result = await db.execute(
        select(Order)
        .where(Order.buyer_id == current_user.user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
    )
    return result.scalars().all()


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    order = await _load_order(db, order_id)
    if order is None or (order.buyer_id != current_user.user_id and not current_user.is_admin):
        raise NotFound("ORDER_NOT_FOUND", "Order not found")
    return order


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_my_order(
    order_id: uuid.UUID,
    cancel_in: Optional[CancelOrderRequest] = None,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel an order (more than 24 hours before its delivery day)."""
    reason = cancel_in.reason if cancel_in else None
    await cancel_order(db, current_user, order_id, reason=reason)
    return await _load_order(db, order_id)
