"""Currency conversion utilities.

Internal storage unit: cents (100 cents = $1).
API / display unit: dollars (float, e.g. 7.5 = $7.50).
Credits are stored in cents too; 1 credit is worth $10.
"""

from __future__ import annotations

# ─── constants ───────────────────────────────────────────────────────────────

CENTS_PER_DOLLAR: int = 100
DOLLARS_PER_CREDIT: int = 10
CENTS_PER_CREDIT: int = CENTS_PER_DOLLAR * DOLLARS_PER_CREDIT  # 1,000


# ─── conversion helpers ───────────────────────────────────────────────────────


def dollars_to_cents(dollars: float) -> int:
    """Convert dollars to cents (round half-up). $1 = 100 cents."""
    return round(dollars * CENTS_PER_DOLLAR)


def cents_to_dollars(cents: int) -> float:
    """Convert cents to dollars."""
    return cents / CENTS_PER_DOLLAR


def cents_to_credits(cents: int) -> int:
    """Whole credits in an amount of cents (floor)."""
    return cents // CENTS_PER_CREDIT


def credits_to_cents(credits: int) -> int:
    return credits * CENTS_PER_CREDIT


def percent_of(cents: int, basis_points: int) -> int:
    """``basis_points`` / 10,000 of ``cents``, floored to whole cents."""
    return cents * basis_points // 10_000
