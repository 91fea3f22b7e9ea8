"""Catalog and market models: products, delivery regions, buyer profiles."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, UTCDateTime
from services.store_service.models.enums import ApprovalStatus, enum_values
from sqlalchemy import JSON, Boolean, CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String, Text, Uuid, true
from sqlalchemy.orm import Mapped, mapped_column

# ============================================================================
# PRODUCTS
# ============================================================================


class Product(Base):
    """A seller's listing. ``available_quantity`` is the inventory counter."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    seller_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit: Mapped[str] = mapped_column(String(50), default="each", server_default="each")
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # Only changed through services.store_service.services.inventory
    available_quantity: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    approval_status: Mapped[ApprovalStatus] = mapped_column(
        SAEnum(
            ApprovalStatus,
            values_callable=enum_values,
            name="product_approval_status_enum",
        ),
        default=ApprovalStatus.PENDING,
        server_default="pending",
    )
    approval_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "available_quantity >= 0", name="ck_products_available_quantity_nonneg"
        ),
        CheckConstraint("unit_price_cents > 0", name="ck_products_price_positive"),
    )

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED

    def __repr__(self):
        return f"<Product {self.name} qty={self.available_quantity}>"


# ============================================================================
# MARKETS (delivery regions)
# ============================================================================


class MarketConfig(Base):
    """Delivery rules for one ZIP code."""

    __tablename__ = "market_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    zip_code: Mapped[str] = mapped_column(String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    timezone: Mapped[str] = mapped_column(
        String(64), default="America/New_York", server_default="America/New_York"
    )

    # Orders for day D close at cutoff_time (local) on day D-1
    cutoff_time: Mapped[str] = mapped_column(
        String(5), default="23:59", server_default="23:59"
    )
    delivery_days: Mapped[list] = mapped_column(JSON, default=list)  # ["Monday", ...]

    minimum_order_cents: Mapped[int] = mapped_column(
        Integer, default=2500, server_default="2500"
    )
    delivery_fee_cents: Mapped[int] = mapped_column(
        Integer, default=750, server_default="750"
    )

    # Collection point (a professional seller's site)
    collection_point_seller_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    collection_point_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    collection_point_address: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    collection_point_city: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    collection_point_state: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )

    # Batch sizing overrides (settings defaults when null)
    batch_min_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    batch_target_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    batch_max_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("minimum_order_cents >= 0", name="ck_market_minimum_nonneg"),
        CheckConstraint("delivery_fee_cents >= 0", name="ck_market_fee_nonneg"),
    )

    def __repr__(self):
        return f"<MarketConfig {self.zip_code} {self.name}>"


class BuyerProfile(Base):
    """Delivery contact details for a buyer."""

    __tablename__ = "buyer_profiles"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    street_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_buyer_profiles_zip_code", "zip_code"),)
