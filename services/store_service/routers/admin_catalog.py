"""Store admin router: product approvals and market configuration."""

from typing import List

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.schemas import (
    BulkApproveRequest,
    BulkRejectRequest,
    BulkReviewResponse,
    BulkRowResponse,
    MarketConfigResponse,
    MarketConfigUpsert,
)
from services.store_service.services import catalog as catalog_service
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/admin", tags=["admin-store"])


def _report(results) -> BulkReviewResponse:
    rows = [
        BulkRowResponse(product_id=r.product_id, status=r.status, reason=r.reason)
        for r in results
    ]
    return BulkReviewResponse(
        succeeded=sum(1 for r in rows if r.status == "succeeded"),
        failed=sum(1 for r in rows if r.status == "failed"),
        results=rows,
    )


# ============================================================================
# APPROVALS
# ============================================================================


@router.post("/products/bulk-approve", response_model=BulkReviewResponse)
async def bulk_approve_products(
    body: BulkApproveRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Approve products; unknown ids are reported per row, not fatal."""
    results = await catalog_service.bulk_review(
        db, body.product_ids, approve=True, note=body.note, reviewer=admin
    )
    return _report(results)


@router.post("/products/bulk-reject", response_model=BulkReviewResponse)
async def bulk_reject_products(
    body: BulkRejectRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    results = await catalog_service.bulk_review(
        db, body.product_ids, approve=False, note=body.reason, reviewer=admin
    )
    return _report(results)


# ============================================================================
# MARKETS
# ============================================================================


@router.get("/markets", response_model=List[MarketConfigResponse])
async def list_markets(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await catalog_service.list_markets(db)


@router.put("/markets/{zip_code}", response_model=MarketConfigResponse)
async def upsert_market(
    zip_code: str,
    market_in: MarketConfigUpsert,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return await catalog_service.upsert_market(db, zip_code, market_in)
