"""Payment processor webhook endpoint."""

from fastapi import APIRouter, Depends, Request
from libs.common.logging import get_logger
from libs.common.rate_limit import limiter
from libs.db.session import get_async_db
from services.payments_service.services.webhooks import handle_webhook
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/stripe")
@limiter.limit("120/minute")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Processor webhook endpoint (no auth; verified by the Stripe-Signature header).
    """
    raw = await request.body()
    outcome = await handle_webhook(db, raw, request.headers.get("stripe-signature"))
    if outcome.duplicate:
        return {"received": True, "status": "duplicate"}
    return {"received": True, "status": "processed" if outcome.handled else "ignored"}
