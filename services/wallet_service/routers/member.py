"""Consumer-facing credits endpoints."""

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.wallet_service.schemas import CreditBalanceResponse, CreditEntryResponse
from services.wallet_service.services.credits import get_balance, list_history
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/me", response_model=CreditBalanceResponse)
async def get_my_credits(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    balance = await get_balance(db, current_user.user_id)
    return CreditBalanceResponse.from_balance(balance)


@router.get("/me/history", response_model=list[CreditEntryResponse])
async def get_my_credit_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await list_history(db, current_user.user_id, limit=limit, offset=offset)
