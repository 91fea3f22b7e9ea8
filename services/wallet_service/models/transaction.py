"""CreditLedgerEntry model: append-only credits ledger."""

import uuid
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, UTCDateTime
from services.wallet_service.models.enums import CreditTransactionType, enum_values
from sqlalchemy import CheckConstraint
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class CreditLedgerEntry(Base):
    """One balance change for a consumer. Never updated or deleted.

    ``sequence`` is 1, 2, 3... per consumer. Appends claim the next number,
    so two writers that read the same "latest" row cannot both commit.
    """

    __tablename__ = "credit_ledger"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    consumer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # Signed: positive for earned/bonus/refund, negative for redeemed
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction_type: Mapped[CreditTransactionType] = mapped_column(
        SAEnum(
            CreditTransactionType,
            name="credit_transaction_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("consumer_id", "sequence", name="uq_credit_ledger_sequence"),
        CheckConstraint(
            "balance_after_cents >= 0", name="ck_credit_ledger_balance_nonneg"
        ),
        CheckConstraint("amount_cents <> 0", name="ck_credit_ledger_amount_nonzero"),
        Index("ix_credit_ledger_consumer_created", "consumer_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditLedgerEntry {self.consumer_id}#{self.sequence} "
            f"{self.amount_cents:+d} -> {self.balance_after_cents}>"
        )
