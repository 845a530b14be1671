"""
Redis cache and pub/sub utilities.

Provides the job status cache and the publish side of realtime alert
broadcasts.
"""
import json
import logging
from datetime import timedelta
from typing import Any, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from ...application.interfaces import CacheBackend
from ...config import get_settings

logger = logging.getLogger(__name__)


class RedisManager:
    """
    Manages the process-wide Redis connection.
    """

    _client: Optional[redis.Redis] = None
    _url: Optional[str] = None

    @classmethod
    def configure(cls, url: str) -> None:
        """Point the manager at a Redis URL before the first connection."""
        cls._url = url

    @classmethod
    async def get_client(cls) -> redis.Redis:
        """Get or create the Redis client."""
        if cls._client is None:
            cls._client = redis.from_url(
                cls._url or get_settings().redis.url,
                encoding='utf-8',
                decode_responses=True,
            )
        return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the Redis connection."""
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None


class Cache(CacheBackend):
    """
    JSON cache with key prefixing.

    A client can be passed in directly; otherwise the shared RedisManager
    client is used.
    """

    def __init__(self, prefix: str = "cache", client: Optional[redis.Redis] = None):
        self.prefix = prefix
        self._client = client

    async def _get_client(self) -> redis.Redis:
        if self._client is not None:
            return self._client
        return await RedisManager.get_client()

    def _key(self, key: str) -> str:
        """Build cache key with prefix."""
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        client = await self._get_client()
        value = await client.get(self._key(key))
        if value is not None:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[Union[int, timedelta]] = None
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl: Expiration time in seconds or timedelta
        """
        client = await self._get_client()
        serialized = json.dumps(value, default=str)

        if ttl is not None:
            if isinstance(ttl, timedelta):
                ttl = int(ttl.total_seconds())
            return bool(await client.setex(self._key(key), ttl, serialized))
        return bool(await client.set(self._key(key), serialized))

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        client = await self._get_client()
        return await client.delete(self._key(key)) > 0

    async def ttl(self, key: str) -> int:
        """Get time-to-live for key in seconds."""
        client = await self._get_client()
        return await client.ttl(self._key(key))


class PubSubManager:
    """
    Redis pub/sub publishing.
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    async def publish(self, channel: str, message: Any) -> int:
        """
        Publish message to channel.

        Args:
            channel: Channel name
            message: Message to publish (will be JSON serialized)

        Returns:
            Number of subscribers that received the message
        """
        client = self._client or await RedisManager.get_client()
        serialized = json.dumps(message, default=str)
        return await client.publish(channel, serialized)


async def health_check(client: Optional[redis.Redis] = None) -> bool:
    """Check Redis connectivity."""
    try:
        client = client or await RedisManager.get_client()
        return bool(await client.ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Redis health check failed: {e}")
        return False
