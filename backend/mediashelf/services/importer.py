"""MyAnimeList list import: resolve each item, upsert it, report per item.

Items are processed one at a time, in input order. That keeps Jikan under
its rate limit and bounds database load. A failing item is recorded as
skipped and the batch carries on; import_batch never raises for a single
item.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf.clients.base import ICacheBackend, IMetadataProvider
from mediashelf.services.collections import CacheTTLs, CollectionService
from mediashelf.services.invalidation import CacheInvalidator
from mediashelf.services.normalizer import normalize_score, normalize_status
from mediashelf.services.title_resolver import TitleResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


@dataclass
class ImportItem:
    """One entry of a client-parsed MAL export."""
    type: str                       # "anime" | "manga"
    title: str
    status: str                     # MAL vocabulary, e.g. "Plan to Watch"
    score: Optional[float] = None   # 0-10
    external_id: Optional[int] = None
    progress: Optional[int] = None  # episodes / chapters consumed


@dataclass
class ImportOutcome:
    title: str
    type: str
    status: str                       # normalized status
    outcome: str                      # imported | updated | skipped | not_found
    matched_id: Optional[int] = None
    rating: Optional[float] = None
    reason: Optional[str] = None


@dataclass
class ImportSummary:
    imported: int = 0
    failed: int = 0
    total: int = 0
    details: list[ImportOutcome] = field(default_factory=list)

    @property
    def not_found(self) -> int:
        return sum(1 for d in self.details if d.outcome == "not_found")

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "failed": self.failed,
            "not_found": self.not_found,
            "total": self.total,
            "details": [asdict(d) for d in self.details],
        }


class CollectionImportService:
    """Runs a batch of MAL items through resolver and upsert."""

    def __init__(
        self,
        db: AsyncSession,
        cache: ICacheBackend,
        metadata: Optional[IMetadataProvider] = None,
        ttls: Optional[CacheTTLs] = None,
    ):
        self.db = db
        self.resolver = TitleResolver(db, metadata)
        self.collections = CollectionService(db, cache, ttls)
        self.invalidator = CacheInvalidator(cache)

    async def import_batch(
        self,
        user_id: int,
        items: list[ImportItem],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportSummary:
        summary = ImportSummary(total=len(items))
        if not items:
            return summary

        for processed, item in enumerate(items, start=1):
            outcome = await self._import_one(user_id, item)
            summary.details.append(outcome)
            if on_progress:
                await on_progress(processed, summary.total)

        summary.imported = sum(1 for d in summary.details if d.outcome in ("imported", "updated"))
        summary.failed = sum(1 for d in summary.details if d.outcome in ("not_found", "skipped"))

        # One fan-out for the whole batch
        touched = [
            (d.type, d.matched_id) for d in summary.details
            if d.outcome in ("imported", "updated") and d.matched_id is not None
        ]
        await self.invalidator.invalidate_batch(user_id, touched)

        logger.info(
            f"MAL import for user {user_id}: {summary.imported} imported, "
            f"{summary.not_found} not found, {summary.failed - summary.not_found} skipped "
            f"of {summary.total}"
        )
        return summary

    async def _import_one(self, user_id: int, item: ImportItem) -> ImportOutcome:
        media_type = "manga" if item.type == "manga" else "anime"
        status = normalize_status(item.status, media_type)
        rating = normalize_score(item.score)
        outcome = ImportOutcome(
            title=item.title, type=media_type, status=status, outcome="skipped", rating=rating,
        )

        try:
            match_id = await self.resolver.resolve(item.title, media_type, item.external_id)
            if not match_id:
                outcome.outcome = "not_found"
                outcome.reason = "No matching title"
                return outcome

            result = await self.collections.upsert(
                user_id, match_id, media_type, status,
                rating=rating, progress=item.progress, invalidate=False,
            )
            outcome.matched_id = match_id
            if rating is not None:
                outcome.rating = result.entry.rating
            outcome.outcome = "imported" if result.created else "updated"
        except Exception as e:
            logger.error(f'MAL import item failed: title="{item.title}" type={media_type}: {e!r}')
            await self._reset_session()
            outcome.outcome = "skipped"
            outcome.reason = "Unexpected error"
        return outcome

    async def _reset_session(self) -> None:
        """Leave the session usable for the next item after a failed one."""
        try:
            await self.db.rollback()
        except Exception as e:
            logger.warning(f"Rollback after failed import item raised: {e!r}")
