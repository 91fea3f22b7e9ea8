"""Payout ledger: revenue splits at pricing time, transfers after delivery."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from libs.common.config import get_settings
from libs.common.currency import percent_of
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.job_lock import single_flight
from services.payments_service.gateway import (
    GatewayError,
    GatewayUnavailable,
    PaymentGateway,
    TransferResult,
)
from services.payments_service.models import (
    Payout,
    PayoutAccount,
    PayoutKind,
    PayoutStatus,
    RecipientType,
)
from services.store_service.models import Order, OrderStatus
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Revenue split (basis points of the order subtotal)
# ---------------------------------------------------------------------------
SELLER_SHARE_BPS = 8_800
COLLECTION_POINT_SHARE_BPS = 200
PLATFORM_FEE_BPS = 1_000

SETTLEMENT_JOB = "payout_settlement"


@dataclass(frozen=True)
class SplitLine:
    recipient_id: Optional[str]
    recipient_type: RecipientType
    kind: PayoutKind
    amount_cents: int


@dataclass(frozen=True)
class PayoutSplit:
    lines: tuple[SplitLine, ...]
    platform_fee_cents: int

    @property
    def total_cents(self) -> int:
        return self.platform_fee_cents + sum(line.amount_cents for line in self.lines)


def compute_split(
    seller_subtotals: Iterable[tuple[str, int]],
    tip_cents: int,
    collection_point_seller_id: Optional[str] = None,
) -> PayoutSplit:
    """Split an order deterministically.

    Each seller gets 88% of their own items' subtotal, the collection point
    2% of the order subtotal, the fulfiller 100% of the tip. The platform
    keeps the rest, including rounding remainders and the collection-point
    share when the market has no collection point.
    """
    per_seller: dict[str, int] = {}
    for seller_id, subtotal in seller_subtotals:
        per_seller[seller_id] = per_seller.get(seller_id, 0) + subtotal
    subtotal_cents = sum(per_seller.values())

    lines: list[SplitLine] = []
    for seller_id in sorted(per_seller):
        share = percent_of(per_seller[seller_id], SELLER_SHARE_BPS)
        if share > 0:
            lines.append(
                SplitLine(seller_id, RecipientType.SELLER, PayoutKind.SALE, share)
            )

    if collection_point_seller_id:
        share = percent_of(subtotal_cents, COLLECTION_POINT_SHARE_BPS)
        if share > 0:
            lines.append(
                SplitLine(
                    collection_point_seller_id,
                    RecipientType.COLLECTION_POINT,
                    PayoutKind.COLLECTION_POINT,
                    share,
                )
            )

    platform_fee = subtotal_cents - sum(line.amount_cents for line in lines)

    if tip_cents > 0:
        lines.append(SplitLine(None, RecipientType.FULFILLER, PayoutKind.TIP, tip_cents))

    return PayoutSplit(lines=tuple(lines), platform_fee_cents=platform_fee)


def create_order_payouts(
    db: AsyncSession, order_id: uuid.UUID, split: PayoutSplit
) -> list[Payout]:
    """Stage one pending Payout per split line (caller commits)."""
    payouts = [
        Payout(
            order_id=order_id,
            recipient_id=line.recipient_id,
            recipient_type=line.recipient_type,
            kind=line.kind,
            amount_cents=line.amount_cents,
            status=PayoutStatus.PENDING,
        )
        for line in split.lines
    ]
    db.add_all(payouts)
    return payouts


async def assign_tip_recipient(
    db: AsyncSession, order_ids: list[uuid.UUID], fulfiller_id: str
) -> int:
    """Point unassigned tip payouts of these orders at the fulfiller."""
    if not order_ids:
        return 0
    result = await db.execute(
        update(Payout)
        .where(
            Payout.order_id.in_(order_ids),
            Payout.kind == PayoutKind.TIP,
            Payout.recipient_id.is_(None),
        )
        .values(recipient_id=fulfiller_id)
    )
    return result.rowcount


async def cancel_order_payouts(db: AsyncSession, order_id: uuid.UUID) -> int:
    result = await db.execute(
        update(Payout)
        .where(Payout.order_id == order_id, Payout.status == PayoutStatus.PENDING)
        .values(status=PayoutStatus.CANCELLED)
    )
    return result.rowcount


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@dataclass
class SettlementResult:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    total_amount_cents: int = 0
    errors: list[dict] = field(default_factory=list)


async def _transfer_with_retry(
    gateway: PaymentGateway, payout: Payout, account: PayoutAccount
) -> tuple[TransferResult, int]:
    """Transfer with exponential backoff on transient gateway errors.

    The idempotency key is fixed per payout, so a retry after an unknown
    outcome can never pay twice.
    """
    settings = get_settings()
    max_attempts = max(1, settings.SETTLEMENT_MAX_ATTEMPTS)
    for attempt in range(1, max_attempts + 1):
        try:
            transfer = await gateway.create_transfer(
                payout.amount_cents,
                destination=account.external_account_id,
                idempotency_key=f"payout-{payout.id}",
                metadata={
                    "payout_id": str(payout.id),
                    "order_id": str(payout.order_id),
                    "kind": payout.kind.value,
                },
            )
            return transfer, attempt
        except GatewayUnavailable as e:
            if attempt == max_attempts:
                e.attempts = attempt
                raise
            delay = settings.SETTLEMENT_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.warning(
                "Transfer for payout %s failed (attempt %d/%d), retrying in %.2fs: %s",
                payout.id,
                attempt,
                max_attempts,
                delay,
                e,
            )
            await asyncio.sleep(delay)


async def settle_payouts(
    db: AsyncSession,
    gateway: PaymentGateway,
    now: Optional[datetime] = None,
) -> SettlementResult:
    """Pay out every pending payout whose order has been delivered.

    Single-flight. Each payout is committed on its own, so one failure does
    not block or roll back the others. Recipients without an enabled payout
    account are skipped and stay pending.
    """
    now = now or utc_now()
    result = SettlementResult()

    async with single_flight(db, SETTLEMENT_JOB, ttl=timedelta(minutes=15), now=now):
        rows = await db.execute(
            select(Payout)
            .join(Order, Order.id == Payout.order_id)
            .where(
                Payout.status == PayoutStatus.PENDING,
                Payout.recipient_id.is_not(None),
                Order.status == OrderStatus.DELIVERED,
            )
            .order_by(Payout.created_at)
        )
        payouts = list(rows.scalars().all())

        recipient_ids = {p.recipient_id for p in payouts}
        accounts_rows = await db.execute(
            select(PayoutAccount).where(PayoutAccount.user_id.in_(list(recipient_ids)))
        )
        accounts = {a.user_id: a for a in accounts_rows.scalars().all()}

        logger.info("Settlement pass: %d candidate payouts", len(payouts))

        for payout in payouts:
            account = accounts.get(payout.recipient_id)
            if account is None or not account.payouts_enabled:
                result.skipped += 1
                logger.info(
                    "Skipping payout %s: recipient %s has no enabled payout account",
                    payout.id,
                    payout.recipient_id,
                )
                continue

            try:
                transfer, attempts = await _transfer_with_retry(gateway, payout, account)
            except GatewayError as e:
                payout.status = PayoutStatus.FAILED
                payout.failure_reason = e.message
                payout.attempts += getattr(e, "attempts", 1)
                payout.last_attempt_at = now
                result.failed += 1
                result.errors.append({"payout_id": str(payout.id), "error": e.message})
                logger.error(
                    "Payout %s to %s failed: %s",
                    payout.id,
                    payout.recipient_id,
                    e.message,
                )
            else:
                payout.status = PayoutStatus.COMPLETED
                payout.external_transfer_id = transfer.transfer_id
                payout.failure_reason = None
                payout.attempts += attempts
                payout.last_attempt_at = now
                payout.completed_at = now
                result.successful += 1
                result.total_amount_cents += payout.amount_cents
                logger.info(
                    "Payout %s completed: %d cents to %s (transfer %s)",
                    payout.id,
                    payout.amount_cents,
                    payout.recipient_id,
                    transfer.transfer_id,
                )
            await db.commit()

    logger.info(
        "Settlement finished: %d successful, %d failed, %d skipped, %d cents",
        result.successful,
        result.failed,
        result.skipped,
        result.total_amount_cents,
    )
    return result


async def retry_failed_payouts(
    db: AsyncSession, payout_ids: Optional[list[uuid.UUID]] = None
) -> int:
    """Put failed payouts back in the queue for the next settlement pass."""
    stmt = (
        update(Payout)
        .where(Payout.status == PayoutStatus.FAILED)
        .values(status=PayoutStatus.PENDING, failure_reason=None)
    )
    if payout_ids:
        stmt = stmt.where(Payout.id.in_(payout_ids))
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount
