"""ARQ (Async Redis Queue) configuration utilities."""

from typing import Optional
from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import get_settings


def get_redis_settings(redis_url: Optional[str] = None) -> RedisSettings:
    """Build ARQ RedisSettings from ``redis_url`` (default: settings.REDIS_URL).

    ``rediss://`` URLs turn on TLS.
    """
    parsed = urlparse(redis_url or get_settings().REDIS_URL)
    if parsed.scheme not in ("redis", "rediss"):
        raise ValueError(f"Unsupported Redis URL scheme: {parsed.scheme!r}")

    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(parsed.path.lstrip("/") or "0"),
        username=parsed.username or None,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_retries=5,
    )
