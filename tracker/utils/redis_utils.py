"""
Redis utility module for the shared lease store connection.

Redis is optional: without REDIS_URL the tracker runs as a single instance
with in-memory leases.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from tracker.config import Config

logger = logging.getLogger(__name__)


class RedisUtils:
    """Centralized Redis configuration and connection utilities."""

    @staticmethod
    def get_secure_redis_url() -> Optional[str]:
        """Get the configured Redis URL if it passes security validation."""
        redis_url = Config.REDIS_URL
        if not redis_url:
            return None
        if RedisUtils._validate_redis_security(redis_url):
            return redis_url
        logger.error("REDIS_URL environment variable contains insecure configuration")
        return None

    @staticmethod
    def _validate_redis_security(redis_url: str) -> bool:
        """Validate that Redis URL meets security requirements."""
        if Config.DEBUG:
            if not redis_url.startswith(('redis://localhost', 'redis://127.0.0.1', 'rediss://')):
                logger.warning(f"Potentially insecure Redis URL in development: {redis_url}")
            return True

        # Production mode - enforce TLS and authentication
        if not redis_url.startswith('rediss://'):
            logger.error("Production Redis must use rediss:// (TLS) protocol")
            return False
        if '@' not in redis_url:
            logger.error("Production Redis must include authentication credentials")
            return False
        return True

    @staticmethod
    async def create_redis_client() -> Optional[redis.Redis]:
        """Create a Redis client, or None when Redis is not configured or unreachable."""
        redis_url = RedisUtils.get_secure_redis_url()
        if not redis_url:
            return None

        client = redis.from_url(redis_url)
        try:
            await client.ping()
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.aclose()
            return None
        logger.info("Successfully connected to Redis")
        return client
