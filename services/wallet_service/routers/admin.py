"""Admin credits management endpoints."""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.currency import dollars_to_cents
from libs.common.logging import get_logger
from libs.common.rate_limit import AWARD_CREDITS, check_rate_limit
from libs.db.session import get_async_db
from services.wallet_service.schemas import (
    AwardCreditsRequest,
    CreditBalanceResponse,
    CreditEntryResponse,
    ReferralBonusRequest,
)
from services.wallet_service.services.credits import (
    award,
    award_referral_bonus,
    get_balance,
)
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/credits", tags=["admin-credits"])


@router.post(
    "/award", response_model=CreditEntryResponse, status_code=status.HTTP_201_CREATED
)
async def award_credits(
    body: AwardCreditsRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Grant credits to a consumer (bonus, goodwill refund, manual earn)."""
    await check_rate_limit(AWARD_CREDITS, admin.user_id)

    entry = await award(
        db,
        consumer_id=body.consumer_id,
        amount_cents=dollars_to_cents(body.amount),
        transaction_type=body.transaction_type,
        description=body.description,
        expires_in_days=body.expires_in_days,
        idempotency_key=body.idempotency_key,
        created_by=admin.user_id,
    )
    logger.info(
        "Admin %s awarded %d cents to %s",
        admin.user_id,
        entry.amount_cents,
        body.consumer_id,
    )
    return entry


@router.post(
    "/referral", response_model=CreditEntryResponse, status_code=status.HTTP_201_CREATED
)
async def grant_referral_bonus(
    body: ReferralBonusRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Pay the referral bonus. Repeats for the same referred consumer are no-ops."""
    await check_rate_limit(AWARD_CREDITS, admin.user_id)
    return await award_referral_bonus(
        db,
        referrer_id=body.referrer_id,
        referred_id=body.referred_id,
        created_by=admin.user_id,
    )


@router.get("/{consumer_id}", response_model=CreditBalanceResponse)
async def get_consumer_credits(
    consumer_id: str,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    return CreditBalanceResponse.from_balance(await get_balance(db, consumer_id))
