"""Unit tests for the credits ledger.

Tests call the ledger functions directly with the db_session fixture;
race tests open their own sessions from session_factory.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from libs.common.errors import ServiceError
from services.store_service.models import OrderStatus
from services.wallet_service.models import CreditLedgerEntry, CreditTransactionType
from services.wallet_service.services import credits
from sqlalchemy import select
from tests.factories import OrderFactory

T0 = datetime(2030, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _entries(session_factory, consumer_id):
    async with session_factory() as session:
        result = await session.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.consumer_id == consumer_id)
            .order_by(CreditLedgerEntry.sequence)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# award / redeem
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_award_then_redeem_appends_entries(db_session):
    """Every change is a new row carrying the running balance."""
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=5000,
        transaction_type=CreditTransactionType.BONUS,
        description="Welcome",
        now=T0,
    )
    entry = await credits.redeem(
        db_session, consumer_id="buyer-1", amount_cents=2000, now=T0 + timedelta(hours=1)
    )

    assert entry.sequence == 2
    assert entry.amount_cents == -2000
    assert entry.balance_after_cents == 3000
    assert entry.transaction_type == CreditTransactionType.REDEEMED

    balance = await credits.get_balance(db_session, "buyer-1", T0 + timedelta(hours=2))
    assert balance.balance_cents == 3000
    assert balance.available_cents == 3000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_more_than_available_fails(db_session):
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=1000,
        transaction_type=CreditTransactionType.BONUS,
        description="Welcome",
        now=T0,
    )

    with pytest.raises(ServiceError) as exc:
        await credits.redeem(db_session, consumer_id="buyer-1", amount_cents=1500, now=T0)

    assert exc.value.code == "INSUFFICIENT_CREDITS"
    assert exc.value.detail["available"] == 1000
    assert exc.value.detail["requested"] == 1500


@pytest.mark.asyncio
@pytest.mark.unit
async def test_award_rejects_non_positive_amounts(db_session):
    with pytest.raises(ServiceError) as exc:
        await credits.award(
            db_session,
            consumer_id="buyer-1",
            amount_cents=0,
            transaction_type=CreditTransactionType.BONUS,
            description="Nothing",
        )

    assert exc.value.status_code == 422


@pytest.mark.asyncio
@pytest.mark.unit
async def test_award_is_idempotent_per_key(db_session, session_factory):
    first = await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=1000,
        transaction_type=CreditTransactionType.BONUS,
        description="Referral",
        idempotency_key="referral-buyer-9",
        now=T0,
    )
    second = await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=1000,
        transaction_type=CreditTransactionType.BONUS,
        description="Referral",
        idempotency_key="referral-buyer-9",
        now=T0,
    )

    assert second.id == first.id
    assert len(await _entries(session_factory, "buyer-1")) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_referral_bonus_paid_once_per_referred_consumer(db_session):
    await credits.award_referral_bonus(
        db_session, referrer_id="buyer-1", referred_id="buyer-2"
    )
    await credits.award_referral_bonus(
        db_session, referrer_id="buyer-1", referred_id="buyer-2"
    )

    balance = await credits.get_balance(db_session, "buyer-1")
    assert balance.available_cents == credits.REFERRAL_BONUS_CENTS


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_earned_credits_expire_at_read_time(db_session):
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=3000,
        transaction_type=CreditTransactionType.EARNED,
        description="Earned",
        expires_in_days=30,
        now=T0,
    )

    soon = await credits.get_balance(db_session, "buyer-1", T0 + timedelta(days=25))
    assert soon.available_cents == 3000
    assert soon.expiring_soon_cents == 3000
    assert soon.next_expiry == T0 + timedelta(days=30)

    later = await credits.get_balance(db_session, "buyer-1", T0 + timedelta(days=31))
    assert later.available_cents == 0
    # The ledger itself is never rewritten.
    assert later.balance_cents == 3000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redemption_consumes_oldest_lot_first(db_session):
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=1000,
        transaction_type=CreditTransactionType.EARNED,
        description="Earned",
        expires_in_days=30,
        now=T0,
    )
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=2000,
        transaction_type=CreditTransactionType.BONUS,
        description="Bonus",
        now=T0,
    )
    await credits.redeem(
        db_session, consumer_id="buyer-1", amount_cents=1500, now=T0 + timedelta(days=1)
    )

    # The expiring lot was used up, so its expiry takes nothing away.
    balance = await credits.get_balance(db_session, "buyer-1", T0 + timedelta(days=40))
    assert balance.available_cents == 1500


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_credits_cannot_be_redeemed(db_session):
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=1000,
        transaction_type=CreditTransactionType.EARNED,
        description="Earned",
        expires_in_days=30,
        now=T0,
    )

    with pytest.raises(ServiceError) as exc:
        await credits.redeem(
            db_session,
            consumer_id="buyer-1",
            amount_cents=500,
            now=T0 + timedelta(days=31),
        )

    assert exc.value.code == "INSUFFICIENT_CREDITS"


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_redemptions_cannot_overspend(db_session, session_factory):
    """Two redemptions of the whole balance: exactly one wins."""
    await credits.award(
        db_session,
        consumer_id="buyer-1",
        amount_cents=1000,
        transaction_type=CreditTransactionType.BONUS,
        description="Welcome",
        now=T0,
    )

    async def _redeem(order_ref: str):
        async with session_factory() as session:
            return await credits.redeem(
                session,
                consumer_id="buyer-1",
                amount_cents=1000,
                idempotency_key=f"redeem-{order_ref}",
                now=T0,
            )

    results = await asyncio.gather(_redeem("a"), _redeem("b"), return_exceptions=True)

    failures = [r for r in results if isinstance(r, ServiceError)]
    assert len(failures) == 1
    assert failures[0].code == "INSUFFICIENT_CREDITS"

    entries = await _entries(session_factory, "buyer-1")
    assert [e.sequence for e in entries] == [1, 2]
    assert entries[-1].balance_after_cents == 0


# ---------------------------------------------------------------------------
# Order credits
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_award_order_credits_once(db_session):
    order = OrderFactory.create(
        buyer_id="buyer-1", status=OrderStatus.DELIVERED, subtotal_cents=25_000
    )
    db_session.add(order)
    await db_session.commit()

    entry = await credits.award_order_credits(db_session, order)
    await db_session.commit()
    again = await credits.award_order_credits(db_session, order)

    assert entry.amount_cents == 2000
    assert entry.idempotency_key == f"earned-order-{order.id}"
    assert entry.expires_at is not None
    assert order.credits_awarded_at is not None
    assert again is None
