"""Unit tests for the pure money and sizing rules.

No database involved: pricing, revenue split, earned credits and batch
sizing are plain functions.
"""

import pytest
from services.delivery_service.services.batching import (
    BatchLimits,
    box_code_for,
    plan_batch_sizes,
)
from services.payments_service.models import PayoutKind, RecipientType
from services.payments_service.services.payouts import compute_split
from services.store_service.services.checkout import price_order
from services.wallet_service.services.credits import earned_credits_for

# ---------------------------------------------------------------------------
# price_order
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_price_order_without_credits():
    price = price_order(5000, 750, 500)

    assert price.credits_applied_cents == 0
    assert price.total_cents == 6250


@pytest.mark.unit
def test_price_order_caps_credits_at_gross_total():
    """Credits never push the total below zero."""
    price = price_order(
        5000, 750, 500, requested_credits_cents=10_000, available_credits_cents=10_000
    )

    assert price.credits_applied_cents == 6250
    assert price.total_cents == 0


@pytest.mark.unit
def test_price_order_caps_credits_at_available_balance():
    price = price_order(
        5000, 750, 500, requested_credits_cents=6000, available_credits_cents=2000
    )

    assert price.credits_applied_cents == 2000
    assert price.total_cents == 4250


@pytest.mark.unit
def test_price_order_partial_credits():
    price = price_order(
        5000, 750, 500, requested_credits_cents=6000, available_credits_cents=6000
    )

    assert price.credits_applied_cents == 6000
    assert price.total_cents == 250


# ---------------------------------------------------------------------------
# compute_split
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_compute_split_two_sellers_with_collection_point_and_tip():
    split = compute_split(
        [("seller-a", 3000), ("seller-b", 2000)], 500, "farm-collection"
    )

    by_recipient = {line.recipient_id: line for line in split.lines}
    assert by_recipient["seller-a"].amount_cents == 2640
    assert by_recipient["seller-b"].amount_cents == 1760
    assert by_recipient["farm-collection"].amount_cents == 100
    assert (
        by_recipient["farm-collection"].recipient_type
        == RecipientType.COLLECTION_POINT
    )
    assert by_recipient[None].kind == PayoutKind.TIP
    assert by_recipient[None].amount_cents == 500
    assert split.platform_fee_cents == 500
    # Everything paid in is accounted for.
    assert split.total_cents == 5500


@pytest.mark.unit
def test_compute_split_platform_keeps_collection_share_without_collection_point():
    split = compute_split([("seller-a", 5000)], 0, None)

    assert [line.recipient_id for line in split.lines] == ["seller-a"]
    assert split.platform_fee_cents == 600


@pytest.mark.unit
def test_compute_split_merges_lines_of_the_same_seller():
    split = compute_split([("seller-a", 999), ("seller-a", 1)], 0, None)

    sellers = [line for line in split.lines if line.kind == PayoutKind.SALE]
    assert len(sellers) == 1
    assert sellers[0].amount_cents == 880


@pytest.mark.unit
def test_compute_split_rounding_goes_to_platform():
    split = compute_split([("seller-a", 333)], 0, "cp")

    # 88% of 333 = 293.04, 2% = 6.66
    assert split.lines[0].amount_cents == 293
    assert split.lines[1].amount_cents == 6
    assert split.platform_fee_cents == 34
    assert split.total_cents == 333


# ---------------------------------------------------------------------------
# earned_credits_for
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "subtotal,expected",
    [(0, 0), (9_999, 0), (10_000, 1_000), (19_999, 1_000), (25_000, 2_000)],
)
def test_earned_credits_one_credit_per_full_hundred_dollars(subtotal, expected):
    assert earned_credits_for(subtotal) == expected


# ---------------------------------------------------------------------------
# Batch sizing
# ---------------------------------------------------------------------------

DEFAULT_LIMITS = BatchLimits(min_size=8, target_size=15, max_size=20)


@pytest.mark.unit
@pytest.mark.parametrize(
    "n,expected",
    [
        (0, []),
        (5, [5]),
        (10, [10]),
        (16, [8, 8]),
        (17, [9, 8]),
        (20, [10, 10]),
        (21, [11, 10]),
        (45, [15, 15, 15]),
        (41, [14, 14, 13]),
    ],
)
def test_plan_batch_sizes(n, expected):
    assert plan_batch_sizes(n, DEFAULT_LIMITS) == expected


@pytest.mark.unit
@pytest.mark.parametrize("n", range(1, 120))
def test_plan_batch_sizes_respects_limits(n):
    sizes = plan_batch_sizes(n, DEFAULT_LIMITS)

    assert sum(sizes) == n
    assert max(sizes) <= DEFAULT_LIMITS.max_size
    assert max(sizes) - min(sizes) <= 1
    # Only a lone batch may fall under the minimum.
    if len(sizes) > 1:
        assert min(sizes) >= DEFAULT_LIMITS.min_size


@pytest.mark.unit
def test_box_code_format():
    assert box_code_for(3, 12) == "B3-12"
