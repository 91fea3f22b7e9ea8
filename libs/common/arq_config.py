"""Redis connection settings for the arq worker."""

from typing import Optional
from urllib.parse import unquote, urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings


def redis_settings_from_url(url: str) -> RedisSettings:
    """Build arq ``RedisSettings`` from a ``redis://`` or ``rediss://`` URL.

    Managed Redis providers hand out TLS URLs with ACL usernames, so both
    are honoured. The database index comes from the path (``/2``).
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("redis", "rediss"):
        raise ValueError(f"Unsupported Redis URL scheme: {parsed.scheme!r}")

    def _part(value: Optional[str]) -> Optional[str]:
        return unquote(value) if value else None

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        username=_part(parsed.username),
        password=_part(parsed.password),
        ssl=parsed.scheme == "rediss",
    )


def get_redis_settings() -> RedisSettings:
    return redis_settings_from_url(get_settings().REDIS_URL)
