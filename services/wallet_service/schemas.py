"""Pydantic schemas for the credits API."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.wallet_service.models import CreditTransactionType
from services.wallet_service.services.credits import CreditBalance


class CreditBalanceResponse(BaseModel):
    consumer_id: str
    balance_cents: int
    available_cents: int
    expiring_soon_cents: int
    next_expiry: Optional[datetime] = None
    available_dollars: float

    @classmethod
    def from_balance(cls, balance: CreditBalance) -> "CreditBalanceResponse":
        return cls(
            consumer_id=balance.consumer_id,
            balance_cents=balance.balance_cents,
            available_cents=balance.available_cents,
            expiring_soon_cents=balance.expiring_soon_cents,
            next_expiry=balance.next_expiry,
            available_dollars=balance.available_cents / 100,
        )


class CreditEntryResponse(BaseModel):
    id: uuid.UUID
    sequence: int
    amount_cents: int
    balance_after_cents: int
    transaction_type: CreditTransactionType
    description: str
    order_id: Optional[uuid.UUID] = None
    expires_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AwardCreditsRequest(BaseModel):
    consumer_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0, description="Dollars")
    description: str = Field(..., min_length=1, max_length=500)
    transaction_type: CreditTransactionType = CreditTransactionType.BONUS
    expires_in_days: Optional[int] = Field(None, gt=0, le=3650)
    idempotency_key: Optional[str] = Field(None, max_length=255)


class ReferralBonusRequest(BaseModel):
    referrer_id: str = Field(..., min_length=1)
    referred_id: str = Field(..., min_length=1)
