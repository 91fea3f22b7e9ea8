"""Admin routes for closing ordering and generating delivery batches."""

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.rate_limit import GENERATE_BATCHES, check_rate_limit
from libs.db.session import get_async_db
from services.delivery_service.schemas import (
    GenerateBatchesRequest,
    GenerateBatchesResponse,
    LockOrdersRequest,
    LockOrdersResponse,
)
from services.delivery_service.services.batching import generate_batches
from services.store_service.services.order_state import lock_orders_for_date
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["admin-delivery"])


@router.post("/admin/orders/lock", response_model=LockOrdersResponse)
async def lock_orders(
    lock_in: LockOrdersRequest,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Freeze confirmed orders for a delivery date (normally run by the worker)."""
    locked = await lock_orders_for_date(db, lock_in.delivery_date)
    return LockOrdersResponse(delivery_date=lock_in.delivery_date, locked=locked)


@router.post("/admin/delivery/batches/generate", response_model=GenerateBatchesResponse)
async def generate_delivery_batches(
    generate_in: GenerateBatchesRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    await check_rate_limit(GENERATE_BATCHES, admin.user_id)
    result = await generate_batches(db, generate_in.delivery_date)
    return GenerateBatchesResponse.model_validate(result)
