"""Pydantic schemas for store service."""

import uuid
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from services.store_service.models import ApprovalStatus, OrderStatus, PaymentStatus

# ============================================================================
# PRODUCT SCHEMAS
# ============================================================================


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    unit: str = Field("each", max_length=50)
    unit_price_cents: int = Field(..., gt=0)
    available_quantity: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    unit: Optional[str] = Field(None, max_length=50)
    unit_price_cents: Optional[int] = Field(None, gt=0)
    available_quantity: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    seller_id: str
    name: str
    description: Optional[str] = None
    unit: str
    unit_price_cents: int
    available_quantity: int
    approval_status: ApprovalStatus
    approval_note: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class BulkApproveRequest(BaseModel):
    product_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    note: Optional[str] = None


class BulkRejectRequest(BaseModel):
    product_ids: List[uuid.UUID] = Field(..., min_length=1, max_length=500)
    reason: str = Field(..., min_length=1, max_length=1000)


class BulkRowResponse(BaseModel):
    product_id: uuid.UUID
    status: Literal["succeeded", "failed"]
    reason: Optional[str] = None


class BulkReviewResponse(BaseModel):
    succeeded: int
    failed: int
    results: List[BulkRowResponse]


# ============================================================================
# MARKET / PROFILE SCHEMAS
# ============================================================================

WEEKDAY_NAMES = {
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
}


class MarketConfigUpsert(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    timezone: str = "America/New_York"
    cutoff_time: str = Field("23:59", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    delivery_days: List[str] = Field(..., min_length=1)
    minimum_order_cents: int = Field(2500, ge=0)
    delivery_fee_cents: int = Field(750, ge=0)
    collection_point_seller_id: Optional[str] = None
    collection_point_name: Optional[str] = None
    collection_point_address: Optional[str] = None
    collection_point_city: Optional[str] = None
    collection_point_state: Optional[str] = None
    batch_min_size: Optional[int] = Field(None, gt=0, le=100)
    batch_target_size: Optional[int] = Field(None, gt=0, le=100)
    batch_max_size: Optional[int] = Field(None, gt=0, le=100)
    is_active: bool = True

    @field_validator("delivery_days")
    @classmethod
    def _weekday_names(cls, value: List[str]) -> List[str]:
        days = [day.strip().capitalize() for day in value]
        unknown = [day for day in days if day.lower() not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(unknown)}")
        return days


class MarketConfigResponse(MarketConfigUpsert):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    zip_code: str


class BuyerProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    street_address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, pattern=r"^\d{5}(-\d{4})?$")


class BuyerProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemCreate(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(1, gt=0, le=100)


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    unit_price_cents: int


class CartResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: str
    active_order_id: Optional[uuid.UUID] = None
    items: List[CartItemResponse] = []
    subtotal_cents: int = 0


# ============================================================================
# CHECKOUT / ORDER SCHEMAS
# ============================================================================


class CheckoutRequest(BaseModel):
    cart_id: uuid.UUID
    delivery_date: date
    use_credits: bool = False
    credits_amount: float = Field(0, ge=0, description="Dollars")
    tip_amount: float = Field(0, ge=0, description="Dollars")
    payment_method_id: Optional[str] = None


class CheckoutResponse(BaseModel):
    order_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    client_secret: Optional[str] = None
    amount_charged: float
    amount_charged_cents: int
    credits_redeemed: float
    credits_redeemed_cents: int


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: uuid.UUID
    seller_id: str
    product_name: str
    quantity: int
    unit_price_cents: int
    subtotal_cents: int


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: str
    delivery_date: date
    zip_code: str
    status: OrderStatus
    payment_status: PaymentStatus
    subtotal_cents: int
    delivery_fee_cents: int
    tip_cents: int
    credits_redeemed_cents: int
    total_cents: int
    box_code: Optional[str] = None
    batch_id: Optional[uuid.UUID] = None
    cancellation_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    items: List[OrderItemResponse] = []
