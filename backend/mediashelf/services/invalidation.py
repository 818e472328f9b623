"""Cache invalidation fan-out for collection writes.

Writers await these before responding, so a client re-reading right after
a write never gets the pre-write value. A failed invalidation is logged and
swallowed: it must never fail the write itself.
"""

import asyncio
import logging
from typing import Iterable

from mediashelf.clients.base import ICacheBackend
from mediashelf.services.cache_keys import KeyTemplate, affected_keys

logger = logging.getLogger(__name__)


class CacheInvalidator:
    """Deletes the cache footprint of collection mutations."""

    def __init__(self, cache: ICacheBackend):
        self.cache = cache

    async def invalidate_user_collection_cache(self, user_id: int) -> None:
        """Every cached read that depends on this user's collection."""
        await self._apply(affected_keys("collection", user_id=user_id), f"user {user_id}")

    async def invalidate_entry(self, user_id: int, media_type: str, media_id: int) -> None:
        """User footprint plus the keys tied to one media entry."""
        keys = affected_keys("collection", user_id=user_id)
        keys += affected_keys("entry", user_id=user_id, media_type=media_type, media_id=media_id)
        await self._apply(keys, f"user {user_id} {media_type}={media_id}")

    async def invalidate_batch(self, user_id: int, entries: Iterable[tuple[str, int]]) -> None:
        """User footprint once, plus the entry keys of every (media_type, media_id) touched."""
        keys = affected_keys("collection", user_id=user_id)
        touched = list(dict.fromkeys(entries))
        for media_type, media_id in touched:
            keys += affected_keys("entry", user_id=user_id, media_type=media_type, media_id=media_id)
        await self._apply(keys, f"user {user_id} batch of {len(touched)}")

    async def _apply(self, keys: list[KeyTemplate], scope: str) -> None:
        results = await asyncio.gather(
            *(self._delete(k) for k in keys),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            logger.error(f"Cache invalidation incomplete for {scope}: {len(failures)} key(s) failed ({failures[0]!r})")
        else:
            logger.debug(f"Cache invalidated for {scope} ({len(keys)} templates)")

    async def _delete(self, key: KeyTemplate) -> None:
        if key.pattern:
            await self.cache.delete_pattern(key.template)
        else:
            await self.cache.delete(key.template)
