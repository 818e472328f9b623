"""Redis-backed JSON cache.

A cache outage must never fail a request: every backend error is logged
and degrades to a miss (reads) or a no-op (writes, deletes).
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from mediashelf.clients.base import ICacheBackend

logger = logging.getLogger(__name__)


class RedisCache(ICacheBackend):
    """ICacheBackend over redis.asyncio. Disabled when no client is given."""

    SCAN_COUNT = 100

    def __init__(self, client: Optional[aioredis.Redis] = None):
        self.client = client

    @classmethod
    def from_url(cls, url: Optional[str]) -> "RedisCache":
        if not url:
            logger.warning("No Redis URL configured - caching disabled")
            return cls(None)
        return cls(aioredis.from_url(url, decode_responses=True))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None
        if raw is None:
            logger.debug(f"Cache MISS {key}")
            return None
        logger.debug(f"Cache HIT {key}")
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache value for {key}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> None:
        if not self.enabled:
            return
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
        except (RedisError, TypeError) as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        if not self.enabled:
            return
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")

    async def delete_pattern(self, pattern: str) -> int:
        """SCAN + batched DEL; never KEYS, which blocks the server."""
        if not self.enabled:
            return 0
        deleted = 0
        batch: list[str] = []
        try:
            async for key in self.client.scan_iter(match=pattern, count=self.SCAN_COUNT):
                batch.append(key)
                if len(batch) >= self.SCAN_COUNT:
                    deleted += await self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.client.delete(*batch)
        except RedisError as e:
            logger.warning(f"Cache pattern delete failed for {pattern}: {e}")
            return deleted
        if deleted:
            logger.debug(f"Deleted {deleted} keys matching {pattern}")
        return deleted

    async def ping(self) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        if self.enabled:
            await self.client.aclose()
