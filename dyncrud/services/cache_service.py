"""Redis client for operational alerts, catalog reload fan-out, and health checks."""

import json
import logging
from typing import Optional, Any
import redis

from dyncrud.core.config import settings

logger = logging.getLogger("dyncrud")


class CacheService:
    """Redis-backed pub/sub and key helpers."""

    def __init__(self):
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                max_connections=50,
                socket_connect_timeout=1,
                socket_timeout=1,
            )
        return self._client

    def publish(self, channel: str, message: str) -> bool:
        """Publish a message to a Redis channel. Returns False when Redis is down."""
        try:
            self.client.publish(channel, message)
            return True
        except redis.RedisError:
            logger.warning("Redis publish to %s failed", channel)
            return False

    def publish_json(self, channel: str, value: Any) -> bool:
        return self.publish(channel, json.dumps(value, default=str))

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


cache_service = CacheService()
