"""Payments models: payment intents, webhook events, payouts."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, UTCDateTime
from services.payments_service.models.enums import (
    IntentStatus,
    PayoutKind,
    PayoutStatus,
    RecipientType,
    WebhookEventStatus,
    enum_values,
)
from sqlalchemy import JSON, Boolean, CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String, Text, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column

# ============================================================================
# PAYMENT INTENTS
# ============================================================================


class PaymentIntentRecord(Base):
    """Our view of a processor payment intent. One per order."""

    __tablename__ = "payment_intents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    provider_intent_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    client_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[IntentStatus] = mapped_column(
        SAEnum(IntentStatus, values_callable=enum_values, name="intent_status_enum"),
        default=IntentStatus.PENDING,
        nullable=False,
    )
    last_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payment_intents_amount_positive"),
    )

    def __repr__(self):
        return f"<PaymentIntentRecord {self.provider_intent_id} {self.status}>"


class WebhookEvent(Base):
    """Processor events already seen. ``event_id`` is the dedupe key."""

    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[WebhookEventStatus] = mapped_column(
        SAEnum(
            WebhookEventStatus,
            values_callable=enum_values,
            name="webhook_event_status_enum",
        ),
        default=WebhookEventStatus.PROCESSING,
        nullable=False,
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


# ============================================================================
# PAYOUTS
# ============================================================================


class Payout(Base):
    """One revenue share owed to a seller, collection point or fulfiller.

    Created when the order is priced; released once the order is delivered.
    """

    __tablename__ = "payouts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Null for tips until a fulfiller claims the order's batch
    recipient_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    recipient_type: Mapped[RecipientType] = mapped_column(
        SAEnum(RecipientType, values_callable=enum_values, name="recipient_type_enum"),
        nullable=False,
    )
    kind: Mapped[PayoutKind] = mapped_column(
        SAEnum(PayoutKind, values_callable=enum_values, name="payout_kind_enum"),
        nullable=False,
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PayoutStatus] = mapped_column(
        SAEnum(PayoutStatus, values_callable=enum_values, name="payout_status_enum"),
        default=PayoutStatus.PENDING,
        nullable=False,
    )
    external_transfer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payouts_amount_positive"),
        Index("ix_payouts_status_recipient", "status", "recipient_id"),
    )

    def __repr__(self):
        return f"<Payout {self.kind} {self.amount_cents} -> {self.recipient_id} {self.status}>"


class PayoutAccount(Base):
    """A recipient's connected account at the processor."""

    __tablename__ = "payout_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    external_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payouts_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false()
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, onupdate=utc_now
    )
