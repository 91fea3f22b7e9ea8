"""Unit tests for payout settlement."""

from datetime import timedelta

import pytest
from libs.common.errors import Conflict
from libs.db import job_lock
from services.payments_service.gateway import (
    FakePaymentGateway,
    GatewayError,
    GatewayUnavailable,
)
from services.payments_service.models import Payout, PayoutKind, PayoutStatus, RecipientType
from services.payments_service.services.payouts import (
    SETTLEMENT_JOB,
    retry_failed_payouts,
    settle_payouts,
)
from services.store_service.models import OrderStatus
from tests.conftest import reload
from tests.factories import OrderFactory, PayoutAccountFactory, PayoutFactory


async def _delivered_order(db, status=OrderStatus.DELIVERED):
    order = OrderFactory.create(status=status)
    db.add(order)
    await db.flush()
    return order


async def _payout_with_account(db, order, recipient_id, **account_overrides):
    payout = PayoutFactory.create(order_id=order.id, recipient_id=recipient_id)
    account = PayoutAccountFactory.create(user_id=recipient_id, **account_overrides)
    db.add_all([payout, account])
    await db.flush()
    return payout, account


@pytest.mark.asyncio
@pytest.mark.unit
async def test_settlement_pays_skips_and_fails_independently(
    db_session, session_factory, fake_gateway
):
    order = await _delivered_order(db_session)
    paid, paid_account = await _payout_with_account(db_session, order, "seller-a")
    broken, broken_account = await _payout_with_account(db_session, order, "seller-b")
    no_account = PayoutFactory.create(order_id=order.id, recipient_id="seller-c")
    unassigned_tip = PayoutFactory.create(
        order_id=order.id,
        recipient_id=None,
        recipient_type=RecipientType.FULFILLER,
        kind=PayoutKind.TIP,
        amount_cents=300,
    )
    undelivered = await _delivered_order(db_session, status=OrderStatus.CONFIRMED)
    not_yet, _ = await _payout_with_account(db_session, undelivered, "seller-d")
    db_session.add_all([no_account, unassigned_tip])
    await db_session.commit()

    fake_gateway.configure(
        failing_destinations={
            broken_account.external_account_id: GatewayError("Account closed", status_code=400)
        }
    )

    result = await settle_payouts(db_session, fake_gateway)

    assert result.successful == 1
    assert result.failed == 1
    assert result.skipped == 1
    assert result.total_amount_cents == paid.amount_cents
    assert result.errors == [{"payout_id": str(broken.id), "error": "Account closed"}]

    stored = await reload(session_factory, Payout, paid.id)
    assert stored.status == PayoutStatus.COMPLETED
    assert stored.external_transfer_id.startswith("tr_fake_")
    assert stored.attempts == 1
    assert stored.completed_at is not None

    stored = await reload(session_factory, Payout, broken.id)
    assert stored.status == PayoutStatus.FAILED
    assert stored.failure_reason == "Account closed"

    assert (await reload(session_factory, Payout, no_account.id)).status == PayoutStatus.PENDING
    assert (await reload(session_factory, Payout, not_yet.id)).status == PayoutStatus.PENDING
    assert (
        await reload(session_factory, Payout, unassigned_tip.id)
    ).status == PayoutStatus.PENDING

    transfers = fake_gateway.calls_to("create_transfer")
    paid_call = next(c for c in transfers if c["destination"] == paid_account.external_account_id)
    assert paid_call["idempotency_key"] == f"payout-{paid.id}"
    assert paid_call["amount_cents"] == paid.amount_cents


@pytest.mark.asyncio
@pytest.mark.unit
async def test_disabled_accounts_are_skipped(db_session, fake_gateway):
    order = await _delivered_order(db_session)
    await _payout_with_account(db_session, order, "seller-a", payouts_enabled=False)
    await db_session.commit()

    result = await settle_payouts(db_session, fake_gateway)

    assert result.skipped == 1
    assert fake_gateway.calls_to("create_transfer") == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transient_errors_retry_with_the_same_key(
    db_session, session_factory, fake_gateway
):
    order = await _delivered_order(db_session)
    payout, account = await _payout_with_account(db_session, order, "seller-a")
    await db_session.commit()
    fake_gateway.configure(
        failing_destinations={
            account.external_account_id: GatewayUnavailable("Service down", status_code=503)
        }
    )

    result = await settle_payouts(db_session, fake_gateway)

    assert result.failed == 1
    calls = fake_gateway.calls_to("create_transfer")
    assert len(calls) == 3
    assert {c["idempotency_key"] for c in calls} == {f"payout-{payout.id}"}

    stored = await reload(session_factory, Payout, payout.id)
    assert stored.status == PayoutStatus.FAILED
    assert stored.attempts == 3


class FlakyGateway(FakePaymentGateway):
    """Fails the first transfer attempt, then behaves."""

    def __init__(self):
        super().__init__()
        self.failures_left = 1

    async def create_transfer(self, amount_cents, **kwargs):
        if self.failures_left:
            self.failures_left -= 1
            raise GatewayUnavailable("Connection reset", status_code=502)
        return await super().create_transfer(amount_cents, **kwargs)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transfer_succeeds_after_a_transient_failure(db_session, session_factory):
    order = await _delivered_order(db_session)
    payout, _ = await _payout_with_account(db_session, order, "seller-a")
    await db_session.commit()

    result = await settle_payouts(db_session, FlakyGateway())

    assert result.successful == 1
    stored = await reload(session_factory, Payout, payout.id)
    assert stored.status == PayoutStatus.COMPLETED
    assert stored.attempts == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retry_failed_requeues_payouts(db_session, session_factory):
    order = await _delivered_order(db_session)
    first = PayoutFactory.create(
        order_id=order.id, status=PayoutStatus.FAILED, failure_reason="Account closed"
    )
    second = PayoutFactory.create(order_id=order.id, status=PayoutStatus.FAILED)
    done = PayoutFactory.create(order_id=order.id, status=PayoutStatus.COMPLETED)
    db_session.add_all([first, second, done])
    await db_session.commit()

    assert await retry_failed_payouts(db_session, [first.id]) == 1
    stored = await reload(session_factory, Payout, first.id)
    assert stored.status == PayoutStatus.PENDING
    assert stored.failure_reason is None
    assert (await reload(session_factory, Payout, second.id)).status == PayoutStatus.FAILED

    assert await retry_failed_payouts(db_session) == 1
    assert (await reload(session_factory, Payout, done.id)).status == PayoutStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_settlement_is_single_flight(db_session, session_factory, fake_gateway):
    async with session_factory() as other:
        await job_lock.acquire(other, SETTLEMENT_JOB, timedelta(minutes=15))

    with pytest.raises(Conflict) as exc:
        await settle_payouts(db_session, fake_gateway)

    assert exc.value.code == "ALREADY_RUNNING"
