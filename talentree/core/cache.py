import json
import logging
from typing import Any, Optional

import redis

from talentree.core.config import settings

logger = logging.getLogger(__name__)


class StatsCache:
    """Short-lived cache for dashboard aggregates. Failures degrade to a miss."""

    def __init__(self, client: redis.Redis, ttl: int):
        self.client = client
        self.ttl = ttl

    @staticmethod
    def make_key(*parts) -> str:
        return ":".join(["stats", *(str(p) for p in parts)])

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache get error: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    def set(self, key: str, value: Any) -> bool:
        try:
            return bool(self.client.set(key, json.dumps(value), ex=self.ttl))
        except redis.RedisError as e:
            logger.error(f"Cache set error: {e}")
            return False


# Connects lazily on first command.
redis_client = redis.Redis.from_url(
    settings.REDIS_URL,
    decode_responses=True,
    socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
    socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
)


def get_stats_cache() -> Optional[StatsCache]:
    if settings.STATS_CACHE_TTL <= 0:
        return None
    return StatsCache(redis_client, settings.STATS_CACHE_TTL)
