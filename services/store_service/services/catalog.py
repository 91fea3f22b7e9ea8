"""Seller listings, admin approvals and market configuration."""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.errors import NotFound, ServiceError
from libs.common.logging import get_logger
from services.store_service.models import ApprovalStatus, MarketConfig, Product
from services.store_service.schemas import (
    MarketConfigUpsert,
    ProductCreate,
    ProductUpdate,
)
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ============================================================================
# PRODUCTS
# ============================================================================


async def create_product(db: AsyncSession, seller: AuthUser, data: ProductCreate) -> Product:
    """New listings start pending approval."""
    product = Product(
        seller_id=seller.user_id,
        name=data.name,
        description=data.description,
        unit=data.unit,
        unit_price_cents=data.unit_price_cents,
        available_quantity=data.available_quantity,
        approval_status=ApprovalStatus.PENDING,
    )
    db.add(product)
    await db.commit()
    await db.refresh(product)
    logger.info("Seller %s listed product %s", seller.user_id, product.id)
    return product


async def get_owned_product(
    db: AsyncSession, product_id: uuid.UUID, user: AuthUser
) -> Product:
    product = await db.get(Product, product_id)
    if product is None or (product.seller_id != user.user_id and not user.is_admin):
        raise NotFound("PRODUCT_NOT_FOUND", "Product not found")
    return product


async def update_product(
    db: AsyncSession, product_id: uuid.UUID, user: AuthUser, data: ProductUpdate
) -> Product:
    product = await get_owned_product(db, product_id, user)
    changes = data.model_dump(exclude_unset=True)

    # Stock is a counter shared with in-flight checkouts; set it in SQL.
    quantity = changes.pop("available_quantity", None)
    for field, value in changes.items():
        setattr(product, field, value)
    if quantity is not None:
        await db.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(available_quantity=quantity)
            .execution_options(synchronize_session=False)
        )

    await db.commit()
    await db.refresh(product)
    return product


async def list_approved_products(
    db: AsyncSession, seller_id: Optional[str] = None
) -> list[Product]:
    query = select(Product).where(
        Product.approval_status == ApprovalStatus.APPROVED,
        Product.is_active.is_(True),
    )
    if seller_id:
        query = query.where(Product.seller_id == seller_id)
    result = await db.execute(query.order_by(Product.name))
    return list(result.scalars().all())


async def list_seller_products(db: AsyncSession, seller_id: str) -> list[Product]:
    result = await db.execute(
        select(Product).where(Product.seller_id == seller_id).order_by(Product.created_at)
    )
    return list(result.scalars().all())


# ============================================================================
# BULK APPROVALS
# ============================================================================


@dataclass(frozen=True)
class BulkRowResult:
    product_id: uuid.UUID
    status: str
    reason: Optional[str] = None


async def bulk_review(
    db: AsyncSession,
    product_ids: list[uuid.UUID],
    approve: bool,
    note: Optional[str] = None,
    reviewer: Optional[AuthUser] = None,
) -> list[BulkRowResult]:
    """Approve or reject many products, best effort.

    Each row runs in its own savepoint, so one bad id does not undo the
    rest. The result lists every requested id once, in request order.
    """
    target = ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED
    results: list[BulkRowResult] = []

    for product_id in dict.fromkeys(product_ids):
        try:
            async with db.begin_nested():
                product = await db.get(Product, product_id)
                if product is None:
                    raise NotFound("PRODUCT_NOT_FOUND", "Product not found")
                product.approval_status = target
                product.approval_note = note
        except ServiceError as e:
            results.append(BulkRowResult(product_id, "failed", e.detail["message"]))
        except SQLAlchemyError as e:
            logger.warning("Bulk review of %s failed: %s", product_id, e)
            results.append(BulkRowResult(product_id, "failed", "Database error"))
        else:
            results.append(BulkRowResult(product_id, "succeeded"))

    await db.commit()
    logger.info(
        "Bulk %s by %s: %d succeeded, %d failed",
        target.value,
        reviewer.user_id if reviewer else "system",
        sum(1 for r in results if r.status == "succeeded"),
        sum(1 for r in results if r.status == "failed"),
    )
    return results


# ============================================================================
# MARKETS
# ============================================================================


async def upsert_market(
    db: AsyncSession, zip_code: str, data: MarketConfigUpsert
) -> MarketConfig:
    limits = [data.batch_min_size, data.batch_target_size, data.batch_max_size]
    if all(v is not None for v in limits) and not (limits[0] <= limits[1] <= limits[2]):
        raise ServiceError(
            "INVALID_BATCH_LIMITS", "Batch sizes must satisfy min ≤ target ≤ max"
        )

    market = await db.scalar(select(MarketConfig).where(MarketConfig.zip_code == zip_code))
    if market is None:
        market = MarketConfig(zip_code=zip_code)
        db.add(market)
    for field, value in data.model_dump().items():
        setattr(market, field, value)
    await db.commit()
    await db.refresh(market)
    return market


async def list_markets(db: AsyncSession) -> list[MarketConfig]:
    result = await db.execute(select(MarketConfig).order_by(MarketConfig.zip_code))
    return list(result.scalars().all())
