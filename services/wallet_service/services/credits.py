"""Credits ledger operations: append-only entries with idempotency.

Balance changes are new ``CreditLedgerEntry`` rows. Each append reads the
consumer's latest entry and inserts ``sequence + 1`` inside a savepoint; the
unique ``(consumer_id, sequence)`` constraint rejects the loser of a race,
which then re-reads and tries again. No row is ever updated.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from libs.common.datetime_utils import utc_now
from libs.common.errors import Conflict, ServiceError, ValidationFailed
from libs.common.logging import get_logger
from services.wallet_service.models import CreditLedgerEntry, CreditTransactionType
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Credit program constants (cents)
# ---------------------------------------------------------------------------
CREDIT_VALUE_CENTS = 1_000  # 1 credit = $10
SPEND_PER_CREDIT_CENTS = 10_000  # 1 credit per $100 spent
EARNED_CREDIT_EXPIRY_DAYS = 30
REFERRAL_BONUS_CENTS = 1_000
EXPIRING_SOON_DAYS = 7

MAX_APPEND_ATTEMPTS = 5


@dataclass(frozen=True)
class CreditBalance:
    consumer_id: str
    balance_cents: int  # latest balance_after, expired lots included
    available_cents: int  # spendable now
    expiring_soon_cents: int
    next_expiry: Optional[datetime]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def _load_entries(db: AsyncSession, consumer_id: str) -> list[CreditLedgerEntry]:
    result = await db.execute(
        select(CreditLedgerEntry)
        .where(CreditLedgerEntry.consumer_id == consumer_id)
        .order_by(CreditLedgerEntry.sequence)
    )
    return list(result.scalars().all())


def _expired(entry: CreditLedgerEntry, at: datetime) -> bool:
    return entry.expires_at is not None and entry.expires_at <= at


def open_lots(
    entries: list[CreditLedgerEntry], now: datetime
) -> list[tuple[CreditLedgerEntry, int]]:
    """Unspent, unexpired credit lots as ``(entry, remaining_cents)``.

    Redemptions consume the oldest lot that was still valid when the
    redemption happened.
    """
    lots: list[list[Any]] = []
    for entry in entries:
        if entry.amount_cents > 0:
            lots.append([entry, entry.amount_cents])
            continue

        owed = -entry.amount_cents
        for lot in lots:
            if owed == 0:
                break
            if lot[1] == 0 or _expired(lot[0], entry.created_at):
                continue
            taken = min(lot[1], owed)
            lot[1] -= taken
            owed -= taken

    return [(e, remaining) for e, remaining in lots if remaining > 0 and not _expired(e, now)]


def summarize(
    consumer_id: str, entries: list[CreditLedgerEntry], now: datetime
) -> CreditBalance:
    lots = open_lots(entries, now)
    soon = now + timedelta(days=EXPIRING_SOON_DAYS)
    expiries = [e.expires_at for e, _ in lots if e.expires_at is not None]
    return CreditBalance(
        consumer_id=consumer_id,
        balance_cents=entries[-1].balance_after_cents if entries else 0,
        available_cents=sum(remaining for _, remaining in lots),
        expiring_soon_cents=sum(
            remaining
            for e, remaining in lots
            if e.expires_at is not None and e.expires_at <= soon
        ),
        next_expiry=min(expiries) if expiries else None,
    )


async def get_balance(
    db: AsyncSession, consumer_id: str, now: Optional[datetime] = None
) -> CreditBalance:
    """Current balance. Expiry is evaluated at read time."""
    entries = await _load_entries(db, consumer_id)
    return summarize(consumer_id, entries, now or utc_now())


async def list_history(
    db: AsyncSession, consumer_id: str, limit: int = 50, offset: int = 0
) -> list[CreditLedgerEntry]:
    result = await db.execute(
        select(CreditLedgerEntry)
        .where(CreditLedgerEntry.consumer_id == consumer_id)
        .order_by(CreditLedgerEntry.sequence.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def _find_by_key(
    db: AsyncSession, idempotency_key: Optional[str]
) -> Optional[CreditLedgerEntry]:
    if not idempotency_key:
        return None
    result = await db.execute(
        select(CreditLedgerEntry).where(
            CreditLedgerEntry.idempotency_key == idempotency_key
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Append
# ---------------------------------------------------------------------------


async def _append(
    db: AsyncSession,
    *,
    consumer_id: str,
    amount_cents: int,
    transaction_type: CreditTransactionType,
    description: str,
    now: datetime,
    order_id: Optional[uuid.UUID] = None,
    idempotency_key: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    created_by: Optional[str] = None,
) -> CreditLedgerEntry:
    existing = await _find_by_key(db, idempotency_key)
    if existing:
        logger.info(
            "Idempotent replay for key=%s → entry=%s", idempotency_key, existing.id
        )
        return existing

    for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
        entries = await _load_entries(db, consumer_id)
        latest = entries[-1] if entries else None

        if amount_cents < 0:
            available = summarize(consumer_id, entries, now).available_cents
            if available < -amount_cents:
                raise ServiceError(
                    "INSUFFICIENT_CREDITS",
                    f"Not enough credits. Requested {-amount_cents} cents, "
                    f"available {available} cents.",
                    requested=-amount_cents,
                    available=available,
                )

        entry = CreditLedgerEntry(
            consumer_id=consumer_id,
            sequence=(latest.sequence + 1) if latest else 1,
            amount_cents=amount_cents,
            balance_after_cents=(latest.balance_after_cents if latest else 0)
            + amount_cents,
            transaction_type=transaction_type,
            description=description,
            order_id=order_id,
            idempotency_key=idempotency_key,
            expires_at=expires_at,
            created_by=created_by,
            created_at=now,
        )
        try:
            async with db.begin_nested():
                db.add(entry)
        except IntegrityError:
            # Either a concurrent append took this sequence number or a
            # concurrent request used the same idempotency key.
            existing = await _find_by_key(db, idempotency_key)
            if existing:
                return existing
            logger.info(
                "Credit ledger append for %s lost race (attempt %d), retrying",
                consumer_id,
                attempt,
            )
            continue

        logger.info(
            "Credit ledger %s %+d cents for %s (balance → %d, key=%s)",
            transaction_type.value,
            amount_cents,
            consumer_id,
            entry.balance_after_cents,
            idempotency_key,
        )
        return entry

    raise Conflict(
        "LEDGER_CONTENTION",
        "Credit balance is changing too quickly. Please retry.",
    )


async def award(
    db: AsyncSession,
    *,
    consumer_id: str,
    amount_cents: int,
    transaction_type: CreditTransactionType,
    description: str,
    expires_in_days: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    order_id: Optional[uuid.UUID] = None,
    created_by: Optional[str] = None,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> CreditLedgerEntry:
    """Append a positive entry (earned, bonus or refund)."""
    if amount_cents <= 0:
        raise ValidationFailed("Credit amount must be positive")
    if not transaction_type.is_credit:
        raise ValidationFailed("Use redeem() to spend credits")
    if expires_in_days is not None and expires_in_days <= 0:
        raise ValidationFailed("expires_in_days must be positive")

    now = now or utc_now()
    entry = await _append(
        db,
        consumer_id=consumer_id,
        amount_cents=amount_cents,
        transaction_type=transaction_type,
        description=description,
        now=now,
        order_id=order_id,
        idempotency_key=idempotency_key,
        expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
        created_by=created_by,
    )
    if commit:
        await db.commit()
    return entry


async def redeem(
    db: AsyncSession,
    *,
    consumer_id: str,
    amount_cents: int,
    order_id: Optional[uuid.UUID] = None,
    idempotency_key: Optional[str] = None,
    description: str = "Credits applied to order",
    now: Optional[datetime] = None,
    commit: bool = True,
) -> CreditLedgerEntry:
    """Append a negative entry. Fails with INSUFFICIENT_CREDITS."""
    if amount_cents <= 0:
        raise ValidationFailed("Redeem amount must be positive")

    entry = await _append(
        db,
        consumer_id=consumer_id,
        amount_cents=-amount_cents,
        transaction_type=CreditTransactionType.REDEEMED,
        description=description,
        now=now or utc_now(),
        order_id=order_id,
        idempotency_key=idempotency_key,
    )
    if commit:
        await db.commit()
    return entry


# ---------------------------------------------------------------------------
# Order-linked entries
# ---------------------------------------------------------------------------


def earned_credits_for(subtotal_cents: int) -> int:
    """1 credit ($10) per full $100 of subtotal."""
    return (subtotal_cents // SPEND_PER_CREDIT_CENTS) * CREDIT_VALUE_CENTS


async def refund_order_credits(
    db: AsyncSession,
    *,
    consumer_id: str,
    order_id: uuid.UUID,
    amount_cents: int,
    now: Optional[datetime] = None,
) -> Optional[CreditLedgerEntry]:
    """Give back credits redeemed on a cancelled order. Once per order."""
    if amount_cents <= 0:
        return None
    return await award(
        db,
        consumer_id=consumer_id,
        amount_cents=amount_cents,
        transaction_type=CreditTransactionType.REFUND,
        description="Credits returned for cancelled order",
        idempotency_key=f"refund-order-{order_id}",
        order_id=order_id,
        now=now,
        commit=False,
    )


async def award_order_credits(db: AsyncSession, order: Any) -> Optional[CreditLedgerEntry]:
    """Award spend credits for an order. Never raises.

    ``order`` needs ``id``, ``buyer_id``, ``subtotal_cents`` and
    ``credits_awarded_at``; the latter is set on success. Failures leave it
    null so the retry job picks the order up later.
    """
    if order.credits_awarded_at is not None:
        return None

    amount = earned_credits_for(order.subtotal_cents)
    try:
        async with db.begin_nested():
            entry = None
            if amount > 0:
                entry = await award(
                    db,
                    consumer_id=order.buyer_id,
                    amount_cents=amount,
                    transaction_type=CreditTransactionType.EARNED,
                    description=f"Earned on order {order.id}",
                    expires_in_days=EARNED_CREDIT_EXPIRY_DAYS,
                    idempotency_key=f"earned-order-{order.id}",
                    order_id=order.id,
                    commit=False,
                )
            order.credits_awarded_at = utc_now()
        return entry
    except Exception:
        logger.exception(
            "Failed to award credits for order %s; will retry", order.id
        )
        return None


async def award_referral_bonus(
    db: AsyncSession,
    *,
    referrer_id: str,
    referred_id: str,
    created_by: Optional[str] = None,
) -> CreditLedgerEntry:
    """$10 bonus to the referrer, once per referred consumer."""
    return await award(
        db,
        consumer_id=referrer_id,
        amount_cents=REFERRAL_BONUS_CENTS,
        transaction_type=CreditTransactionType.BONUS,
        description=f"Referral bonus for {referred_id}",
        idempotency_key=f"referral-{referred_id}",
        created_by=created_by,
    )
