"""Datetime utilities for timezone-aware UTC timestamps.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now)
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def start_of_day_utc(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def hours_until(moment: datetime, now: datetime) -> float:
    return (moment - now).total_seconds() / 3600


def order_cutoff(delivery_date: date, cutoff_time: str, tz_name: str) -> datetime:
    """When ordering closes for ``delivery_date``.

    Orders for day D close at ``cutoff_time`` ("HH:MM", market-local) on
    day D-1. Returned as an aware datetime in the market's timezone.
    """
    hour, minute = (int(part) for part in cutoff_time.split(":", 1))
    day_before = delivery_date - timedelta(days=1)
    return datetime.combine(day_before, time(hour, minute), tzinfo=ZoneInfo(tz_name))
