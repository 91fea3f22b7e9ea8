"""Payout schemas."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.payments_service.models import (
    PayoutKind,
    PayoutStatus,
    RecipientType,
)


class PayoutResponse(BaseModel):
    """Response for a single payout."""

    id: uuid.UUID
    order_id: uuid.UUID
    recipient_id: Optional[str] = None
    recipient_type: RecipientType
    kind: PayoutKind
    amount_cents: int
    amount: float
    status: PayoutStatus
    external_transfer_id: Optional[str] = None
    failure_reason: Optional[str] = None
    attempts: int
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayoutListResponse(BaseModel):
    """Paginated list of payouts."""

    items: List[PayoutResponse]
    total: int
    page: int
    page_size: int


class SettlementResponse(BaseModel):
    """Outcome of one settlement pass."""

    successful: int
    failed: int
    skipped: int
    total_amount_cents: int
    total_amount: float
    errors: List[dict] = []


class RetryPayoutsRequest(BaseModel):
    payout_ids: Optional[List[uuid.UUID]] = None


class RetryPayoutsResponse(BaseModel):
    requeued: int


class PayoutAccountUpsert(BaseModel):
    """Admin registration of a recipient's connected account."""

    user_id: str = Field(..., min_length=1)
    external_account_id: str = Field(..., min_length=1)
    payouts_enabled: bool = True


class PayoutAccountResponse(BaseModel):
    id: uuid.UUID
    user_id: str
    external_account_id: str
    payouts_enabled: bool

    model_config = ConfigDict(from_attributes=True)
