"""Rate limiting for the portal API (slowapi)."""

import logging

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from portal.core.config import settings

logger = logging.getLogger(__name__)

MEMORY_STORAGE = "memory://"


def _default_limits() -> list[str]:
    if settings.TESTING or settings.RATE_LIMIT_API <= 0:
        return []
    return [f"{settings.RATE_LIMIT_API}/minute"]


def _storage_uri() -> str:
    """Redis when reachable (shared across workers), otherwise per-process memory."""
    if settings.TESTING:
        return MEMORY_STORAGE
    try:
        redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", exc.__class__.__name__)
        return MEMORY_STORAGE
    return settings.REDIS_URL


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=_default_limits(),
)
