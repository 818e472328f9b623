"""Per-user media collections: writes, and the cached reads they invalidate.

A user holds at most one entry per (media type, media). Adding a media and
changing its status are the same operation (upsert); the entry moves between
status buckets in place.

Concurrency: upsert creates optimistically. When two requests race on the
same (user, media), the loser hits the unique constraint, rolls back and
updates the winner's row instead (last writer wins on status and rating).
There is no explicit lock or serializable transaction.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, delete, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf.clients.base import ICacheBackend
from mediashelf.errors import ConflictError, NotFoundError
from mediashelf.models.tables import MEDIA_MODELS, User
from mediashelf.services import cache_keys
from mediashelf.services.invalidation import CacheInvalidator
from mediashelf.services.normalizer import (
    MEDIA_TYPES, STATUS_CODES, check_media_type, status_code, status_name, validate_rating,
)

logger = logging.getLogger(__name__)

CACHE_GET_TIMEOUT = 5.0


@dataclass
class CacheTTLs:
    """Seconds each cached read stays valid."""
    lists: int = 1200
    check: int = 300
    ratings: int = 1200
    summary: int = 1200
    collectors: int = 300

    @classmethod
    def from_settings(cls, s) -> "CacheTTLs":
        return cls(
            lists=s.cache_ttl_lists,
            check=s.cache_ttl_check,
            ratings=s.cache_ttl_ratings,
            summary=s.cache_ttl_summary,
            collectors=s.cache_ttl_collectors,
        )


@dataclass
class UpsertResult:
    entry: Any
    created: bool


class CollectionService:
    """Collection writes with cache fan-out, and cached read paths."""

    def __init__(self, db: AsyncSession, cache: ICacheBackend, ttls: Optional[CacheTTLs] = None):
        self.db = db
        self.cache = cache
        self.ttls = ttls or CacheTTLs()
        self.invalidator = CacheInvalidator(cache)

    # ── Writes ───────────────────────────────────────────────────

    async def upsert(
        self,
        user_id: int,
        media_id: int,
        media_type: str,
        status: str,
        rating: Optional[float] = None,
        notes: Optional[str] = None,
        invalidate: bool = True,
        progress: Optional[int] = None,
    ) -> UpsertResult:
        """Create the (user, media) entry or update it in place.

        rating None leaves an existing rating untouched (new entries get 0);
        other ratings are clamped to 0-5 and snapped to the nearest half step.
        progress is episodes watched (anime) or chapters read (manga).
        With invalidate=False the caller owns the cache fan-out; the batch
        importer uses this to invalidate once per batch.
        """
        check_media_type(media_type)
        code = status_code(status)
        if rating is not None:
            rating = max(0.0, min(5.0, float(rating)))
            rating = round(rating * 2) / 2

        catalog, model = MEDIA_MODELS[media_type]
        if await self.db.get(catalog, media_id) is None:
            raise NotFoundError(f"{media_type.capitalize()} {media_id} not found")

        entry = await self._find_entry(model, user_id, media_id)
        created = entry is None

        if created:
            entry = model(
                user_id=user_id,
                media_id=media_id,
                status=code,
                rating=rating if rating is not None else 0,
                notes=notes,
                is_public=True,
            )
            self._set_progress(entry, media_type, progress)
            self.db.add(entry)
            try:
                await self.db.commit()
            except IntegrityError:
                # Lost a create race, or the user/media vanished.
                await self.db.rollback()
                entry = await self._find_entry(model, user_id, media_id)
                if entry is None:
                    raise NotFoundError("Related user or media not found") from None
                logger.info(f"Concurrent add for user {user_id} {media_type}={media_id}, updating instead")
                created = False

        if not created:
            self._apply(entry, code, rating, notes)
            self._set_progress(entry, media_type, progress)
            await self.db.commit()

        if invalidate:
            await self.invalidator.invalidate_entry(user_id, media_type, media_id)
        return UpsertResult(entry=entry, created=created)

    async def add(
        self,
        user_id: int,
        media_id: int,
        media_type: str,
        status: str,
        rating: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> UpsertResult:
        """Add-only variant: rejects a media the user already holds."""
        check_media_type(media_type)
        _, model = MEDIA_MODELS[media_type]
        if await self._find_entry(model, user_id, media_id) is not None:
            raise ConflictError(f"{media_type.capitalize()} {media_id} is already in the collection")
        return await self.upsert(user_id, media_id, media_type, status, rating, notes)

    async def remove(self, user_id: int, media_type: str, media_id: int) -> None:
        check_media_type(media_type)
        _, model = MEDIA_MODELS[media_type]
        result = await self.db.execute(
            delete(model).where(model.user_id == user_id, model.media_id == media_id)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError(f"{media_type.capitalize()} {media_id} is not in the collection")
        await self.db.commit()
        await self.invalidator.invalidate_entry(user_id, media_type, media_id)

    async def update_rating(self, user_id: int, media_type: str, media_id: int, rating: float) -> float:
        check_media_type(media_type)
        rating = validate_rating(rating)
        _, model = MEDIA_MODELS[media_type]
        result = await self.db.execute(
            update(model)
            .where(model.user_id == user_id, model.media_id == media_id)
            .values(rating=rating, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError(f"{media_type.capitalize()} {media_id} is not in the collection")
        await self.db.commit()
        await self.invalidator.invalidate_entry(user_id, media_type, media_id)
        return rating

    # ── Cached reads ─────────────────────────────────────────────

    async def is_in_collection(self, user_id: int, media_type: str, media_id: int) -> dict:
        check_media_type(media_type)
        key = cache_keys.collection_check_key(user_id, media_type, media_id)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        _, model = MEDIA_MODELS[media_type]
        entry = await self._find_entry(model, user_id, media_id)
        result = {
            "in_collection": entry is not None,
            "entry": self.entry_dict(entry, media_type) if entry is not None else None,
        }
        await self._store(key, result, self.ttls.check)
        return result

    async def check_bulk(self, user_id: int, media_type: str, media_ids: list[int]) -> list[int]:
        """Which of media_ids the user holds. Uncached: ids vary per page."""
        check_media_type(media_type)
        if not media_ids:
            return []
        _, model = MEDIA_MODELS[media_type]
        rows = await self.db.execute(
            select(model.media_id).where(model.user_id == user_id, model.media_id.in_(media_ids))
        )
        return sorted(rows.scalars().all())

    async def list_items(
        self,
        user_id: int,
        media_type: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Paginated collection entries, newest first, with per-status counts."""
        if media_type:
            check_media_type(media_type)
        code = status_code(status) if status else None
        key = cache_keys.collection_items_key(user_id, media_type, status, page, limit)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        types = [media_type] if media_type else list(MEDIA_TYPES)
        # Each type contributes at most page*limit rows to the merged page
        window = page * limit
        rows: list[dict] = []
        total = 0
        counts = {name: 0 for name in STATUS_CODES}

        for mt in types:
            catalog, model = MEDIA_MODELS[mt]
            filters = [model.user_id == user_id]
            if code is not None:
                filters.append(model.status == code)

            total += (await self.db.execute(
                select(func.count()).select_from(model).where(*filters)
            )).scalar_one()

            result = await self.db.execute(
                select(model, catalog.title, catalog.year)
                .outerjoin(catalog, catalog.id == model.media_id)
                .where(*filters)
                .order_by(model.created_at.desc(), model.id.desc())
                .limit(window)
            )
            for entry, title, year in result.all():
                item = self.entry_dict(entry, mt)
                item.update(title=title, year=year)
                rows.append(item)

            grouped = await self.db.execute(
                select(model.status, func.count())
                .where(model.user_id == user_id)
                .group_by(model.status)
            )
            for code_value, count in grouped.all():
                counts[status_name(code_value)] += count

        rows.sort(key=lambda r: r["created_at"] or "", reverse=True)
        start = (page - 1) * limit
        result = {
            "items": rows[start:start + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": (total + limit - 1) // limit if limit else 0,
            },
            "status_counts": counts,
        }
        await self._store(key, result, self.ttls.lists)
        return result

    async def ratings_distribution(
        self,
        user_id: int,
        media_type: str,
        status: Optional[str] = None,
        own: bool = True,
    ) -> dict:
        """Histogram of ratings on the 1-10 scale, plus the unrated count."""
        check_media_type(media_type)
        code = status_code(status) if status else None
        key = cache_keys.collection_ratings_key(user_id, media_type, status, own)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        _, model = MEDIA_MODELS[media_type]
        filters = [model.user_id == user_id]
        if not own:
            filters.append(model.is_public.is_(True))
        if code is not None:
            filters.append(model.status == code)

        grouped = await self.db.execute(
            select(model.rating, func.count()).where(*filters).group_by(model.rating)
        )
        buckets = {i: 0 for i in range(1, 11)}
        unrated = 0
        for rating, count in grouped.all():
            value = round(float(rating or 0) * 2)
            if value <= 0:
                unrated += count
            elif value <= 10:
                buckets[value] += count

        data = [{"rating": r, "count": c} for r, c in sorted(buckets.items())]
        result = {
            "data": data,
            "meta": {
                "user_id": user_id,
                "media_type": media_type,
                "status": status or "all",
                "total_rated": sum(buckets.values()),
                "unrated": unrated,
            },
        }
        await self._store(key, result, self.ttls.ratings)
        return result

    async def find_user_collections(self, user_id: int, own: bool = True) -> dict:
        """Per media type, per status entry counts. Public view hides private entries."""
        key = cache_keys.user_summary_key(user_id, own)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        collections = []
        totals = {}
        for mt in MEDIA_TYPES:
            _, model = MEDIA_MODELS[mt]
            filters = [model.user_id == user_id]
            if not own:
                filters.append(model.is_public.is_(True))
            grouped = await self.db.execute(
                select(model.status, func.count()).where(*filters).group_by(model.status)
            )
            by_status = dict(grouped.all())
            totals[mt] = sum(by_status.values())
            for name, code in STATUS_CODES.items():
                collections.append({
                    "media_type": mt,
                    "status": name,
                    "count": by_status.get(code, 0),
                })

        result = {
            "user_id": user_id,
            "view": "own" if own else "public",
            "collections": collections,
            "totals": totals,
        }
        await self._store(key, result, self.ttls.summary)
        return result

    async def media_collectors(self, media_type: str, media_id: int, page: int = 1, limit: int = 20) -> dict:
        """Users with a public entry for one media."""
        check_media_type(media_type)
        key = cache_keys.media_collectors_key(media_type, media_id, page, limit)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        _, model = MEDIA_MODELS[media_type]
        filters = [model.media_id == media_id, model.is_public.is_(True)]
        total = (await self.db.execute(
            select(func.count()).select_from(model).where(*filters)
        )).scalar_one()
        rows = await self.db.execute(
            select(model, User.username)
            .join(User, User.id == model.user_id)
            .where(*filters)
            .order_by(model.updated_at.desc(), model.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = [
            {
                "user_id": entry.user_id,
                "username": username,
                "status": status_name(entry.status),
                "rating": float(entry.rating or 0),
            }
            for entry, username in rows.all()
        ]
        result = {
            "users": users,
            "pagination": {"page": page, "limit": limit, "total": total},
        }
        await self._store(key, result, self.ttls.collectors)
        return result

    async def get_media(self, media_type: str, media_id: int) -> dict:
        """Catalog record with collection figures (count, average rating)."""
        check_media_type(media_type)
        key = cache_keys.CATALOG_RECORD.format(media_type=media_type, media_id=media_id)
        cached = await self._cached(key)
        if cached is not None:
            return cached

        catalog, model = MEDIA_MODELS[media_type]
        media = await self.db.get(catalog, media_id)
        if media is None:
            raise NotFoundError(f"{media_type.capitalize()} {media_id} not found")

        count, average = (await self.db.execute(
            select(func.count(model.id), func.avg(model.rating))
            .where(model.media_id == media_id, model.rating > 0)
        )).one()
        members = (await self.db.execute(
            select(func.count()).select_from(model).where(model.media_id == media_id)
        )).scalar_one()

        result = {
            "id": media.id,
            "media_type": media_type,
            "title": media.title,
            "title_fr": media.title_fr,
            "title_orig": media.title_orig,
            "year": media.year,
            "collection_count": members,
            "rating_count": count,
            "average_rating": round(float(average), 2) if average is not None else None,
        }
        await self._store(key, result, self.ttls.lists)
        return result

    # ── Helpers ──────────────────────────────────────────────────

    async def _find_entry(self, model, user_id: int, media_id: int):
        """The user's entry for a media, whatever its status."""
        result = await self.db.execute(
            select(model).where(model.user_id == user_id, model.media_id == media_id).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(entry, code: int, rating: Optional[float], notes: Optional[str]) -> None:
        entry.status = code
        if rating is not None:
            entry.rating = rating
        if notes is not None:
            entry.notes = notes
        entry.updated_at = datetime.now(timezone.utc)

    @staticmethod
    def _set_progress(entry, media_type: str, progress: Optional[int]) -> None:
        if progress is None:
            return
        if media_type == "anime":
            entry.episodes_watched = progress
        elif media_type == "manga":
            entry.chapters_read = progress

    async def _cached(self, key: str) -> Optional[Any]:
        """Cache read that falls through to the database on any cache trouble."""
        try:
            return await asyncio.wait_for(self.cache.get(key), CACHE_GET_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Cache get timed out for {key}")
        except Exception as e:
            logger.warning(f"Cache get failed for {key}: {e}")
        return None

    async def _store(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.cache.set(key, value, ttl)
        except Exception as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    @staticmethod
    def entry_dict(entry, media_type: str) -> dict:
        data = {
            "media_type": media_type,
            "media_id": entry.media_id,
            "status": status_name(entry.status),
            "rating": float(entry.rating or 0),
            "notes": entry.notes,
            "is_public": entry.is_public,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
            "updated_at": entry.updated_at.isoformat() if entry.updated_at else None,
        }
        if media_type == "anime":
            data["episodes_watched"] = entry.episodes_watched
        elif media_type == "manga":
            data["chapters_read"] = entry.chapters_read
        elif media_type == "game":
            data["platform_played"] = entry.platform_played
        return data
