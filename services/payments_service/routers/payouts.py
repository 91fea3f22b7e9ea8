"""Payout routes: settlement for admins, earnings for recipients."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user, require_admin
from libs.auth.models import AuthUser
from libs.common.currency import cents_to_dollars
from libs.common.logging import get_logger
from libs.common.rate_limit import PROCESS_PAYOUTS, check_rate_limit
from libs.db.session import get_async_db
from services.payments_service.gateway import get_gateway
from services.payments_service.models import Payout, PayoutAccount, PayoutStatus
from services.payments_service.payout_schemas import (
    PayoutAccountResponse,
    PayoutAccountUpsert,
    PayoutListResponse,
    PayoutResponse,
    RetryPayoutsRequest,
    RetryPayoutsResponse,
    SettlementResponse,
)
from services.payments_service.services.payouts import (
    retry_failed_payouts,
    settle_payouts,
)
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Admin router for payout management
admin_router = APIRouter(prefix="/admin/payouts", tags=["admin-payouts"])

# Recipient router for viewing own payouts
recipient_router = APIRouter(prefix="/payouts", tags=["payouts"])


def _payout_to_response(payout: Payout) -> PayoutResponse:
    return PayoutResponse(
        id=payout.id,
        order_id=payout.order_id,
        recipient_id=payout.recipient_id,
        recipient_type=payout.recipient_type,
        kind=payout.kind,
        amount_cents=payout.amount_cents,
        amount=cents_to_dollars(payout.amount_cents),
        status=payout.status,
        external_transfer_id=payout.external_transfer_id,
        failure_reason=payout.failure_reason,
        attempts=payout.attempts,
        last_attempt_at=payout.last_attempt_at,
        completed_at=payout.completed_at,
        created_at=payout.created_at,
    )


async def _list(
    db: AsyncSession,
    page: int,
    page_size: int,
    status: Optional[PayoutStatus] = None,
    recipient_id: Optional[str] = None,
) -> PayoutListResponse:
    query = select(Payout)
    if status:
        query = query.where(Payout.status == status)
    if recipient_id:
        query = query.where(Payout.recipient_id == recipient_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    query = query.order_by(Payout.created_at.desc())
    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)

    return PayoutListResponse(
        items=[_payout_to_response(p) for p in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
    )


# =============================================================================
# Admin Endpoints
# =============================================================================


@admin_router.get("/", response_model=PayoutListResponse)
async def list_payouts(
    status: Optional[PayoutStatus] = None,
    recipient_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """List payouts with optional filters."""
    return await _list(db, page, page_size, status, recipient_id)


@admin_router.post("/settle", response_model=SettlementResponse)
async def run_settlement(
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Transfer every releasable payout now."""
    await check_rate_limit(PROCESS_PAYOUTS, admin.user_id)
    result = await settle_payouts(db, get_gateway())
    logger.info(
        "Manual settlement by %s",
        admin.user_id,
        extra={"extra_fields": {"successful": result.successful, "failed": result.failed}},
    )
    return SettlementResponse(
        successful=result.successful,
        failed=result.failed,
        skipped=result.skipped,
        total_amount_cents=result.total_amount_cents,
        total_amount=cents_to_dollars(result.total_amount_cents),
        errors=result.errors,
    )


@admin_router.post("/retry-failed", response_model=RetryPayoutsResponse)
async def requeue_failed_payouts(
    retry_in: RetryPayoutsRequest,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    requeued = await retry_failed_payouts(db, retry_in.payout_ids)
    return RetryPayoutsResponse(requeued=requeued)


@admin_router.put("/accounts", response_model=PayoutAccountResponse)
async def upsert_payout_account(
    account_in: PayoutAccountUpsert,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Register or update a recipient's connected account."""
    account = await db.scalar(
        select(PayoutAccount).where(PayoutAccount.user_id == account_in.user_id)
    )
    if account is None:
        account = PayoutAccount(user_id=account_in.user_id)
        db.add(account)
    account.external_account_id = account_in.external_account_id
    account.payouts_enabled = account_in.payouts_enabled
    await db.commit()
    await db.refresh(account)
    return account


# =============================================================================
# Recipient Endpoints
# =============================================================================


@recipient_router.get("/me", response_model=PayoutListResponse)
async def list_my_payouts(
    status: Optional[PayoutStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Payouts owed or paid to the caller."""
    return await _list(db, page, page_size, status, current_user.user_id)
