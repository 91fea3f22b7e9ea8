"""Rate limiting for the marketplace API.

Two layers:

* slowapi ``limiter`` for coarse per-route limits on unauthenticated
  endpoints, keyed by client IP.
* Named sliding-window rules (``RateLimitRule``) for mutating operations,
  backed by the ``limits`` moving-window strategy. A hit is recorded and
  checked in one storage operation, so concurrent requests for the same key
  cannot both slip through the last free slot.
"""

import math
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Request, Response
from limits import RateLimitItemPerSecond
from limits.aio.storage import Storage
from limits.aio.strategies import MovingWindowRateLimiter
from limits.storage import storage_from_string
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings
from libs.common.errors import TooManyRequests
from libs.common.logging import get_logger

logger = get_logger(__name__)


def _get_client_ip(request: Request) -> str:
    """Client IP, honouring the first hop of X-Forwarded-For."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


@lru_cache
def get_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=_get_client_ip,
        default_limits=["100/minute"],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="moving-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """429 response for slowapi limits, shaped like ``TooManyRequests``."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": {
                "code": "TOO_MANY_REQUESTS",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={
            "Retry-After": str(getattr(exc, "retry_after", 60)),
            "X-RateLimit-Limit": str(getattr(exc, "limit", "unknown")),
        },
    )


# ---------------------------------------------------------------------------
# Sliding-window rules for mutating operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitRule:
    prefix: str
    max_requests: int
    window_seconds: int

    @property
    def item(self) -> RateLimitItemPerSecond:
        return RateLimitItemPerSecond(self.max_requests, self.window_seconds)


CHECKOUT = RateLimitRule("checkout", 10, 15 * 60)
CANCEL_ORDER = RateLimitRule("cancel_order", 10, 15 * 60)
GENERATE_BATCHES = RateLimitRule("generate_batches", 1, 10 * 60)
PROCESS_PAYOUTS = RateLimitRule("process_payouts", 1, 5 * 60)
CLAIM_ROUTE = RateLimitRule("claim_route", 20, 5 * 60)
# One scan per box; must stay above the largest batch a market may configure
PICKUP_SCAN = RateLimitRule("pickup_scan", 120, 5 * 60)
AWARD_CREDITS = RateLimitRule("award_credits", 20, 15 * 60)


def _async_storage_uri(uri: str) -> str:
    return uri if uri.startswith("async+") else f"async+{uri}"


@lru_cache
def get_rule_storage() -> Storage:
    return storage_from_string(
        _async_storage_uri(get_settings().RATE_LIMIT_STORAGE_URI)
    )


@lru_cache
def get_rule_limiter() -> MovingWindowRateLimiter:
    return MovingWindowRateLimiter(get_rule_storage())


async def check_rate_limit(rule: RateLimitRule, identity: str) -> None:
    """Record one request for ``identity`` under ``rule``.

    Raises ``TooManyRequests`` with a retry-after hint (seconds until the
    oldest request in the window expires) when the window is full.
    """
    if not get_settings().RATE_LIMIT_ENABLED:
        return

    rule_limiter = get_rule_limiter()
    if await rule_limiter.hit(rule.item, rule.prefix, identity):
        return

    stats = await rule_limiter.get_window_stats(rule.item, rule.prefix, identity)
    retry_after = max(1, math.ceil(stats.reset_time - time.time()))
    logger.warning(
        "Rate limit exceeded for %s (%s)",
        rule.prefix,
        identity,
        extra={"extra_fields": {"retry_after": retry_after}},
    )
    raise TooManyRequests(retry_after=retry_after, scope=rule.prefix)


async def reset_rate_limits(storage: Optional[Storage] = None) -> None:
    """Clear all recorded hits."""
    await (storage or get_rule_storage()).reset()
