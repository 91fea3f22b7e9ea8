"""Store catalog router: public listings and seller product management."""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from libs.auth.dependencies import require_role
from libs.auth.models import AuthUser
from libs.common.rate_limit import limiter
from libs.db.session import get_async_db
from services.store_service.schemas import (
    ProductCreate,
    ProductResponse,
    ProductUpdate,
)
from services.store_service.services import catalog as catalog_service
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])

require_seller = require_role("seller")


@router.get("/products", response_model=List[ProductResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    seller_id: Optional[str] = None,
    db: AsyncSession = Depends(get_async_db),
):
    """Approved, active products."""
    return await catalog_service.list_approved_products(db, seller_id)


@router.get("/seller/products", response_model=List[ProductResponse])
async def list_my_products(
    seller: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    return await catalog_service.list_seller_products(db, seller.user_id)


@router.post(
    "/seller/products",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_product(
    product_in: ProductCreate,
    seller: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    return await catalog_service.create_product(db, seller, product_in)


@router.patch("/seller/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: uuid.UUID,
    product_in: ProductUpdate,
    seller: AuthUser = Depends(require_seller),
    db: AsyncSession = Depends(get_async_db),
):
    return await catalog_service.update_product(db, product_id, seller, product_in)
