"""Resolve an external (MyAnimeList) title to a catalog entry.

Matching is best effort. A title we cannot place is a normal outcome
(reported as not_found by the importer), never an error.
"""

import logging
from typing import Optional

from sqlalchemy import select, or_, func
from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf.clients.base import IMetadataProvider, MetadataRecord
from mediashelf.models.tables import MEDIA_MODELS, PUBLISHED
from mediashelf.services.normalizer import EXTERNAL_MEDIA_TYPES

logger = logging.getLogger(__name__)


class TitleResolver:
    """Catalog lookup by title, widened with MAL title variants when needed."""

    def __init__(self, db: AsyncSession, metadata: Optional[IMetadataProvider] = None):
        self.db = db
        self.metadata = metadata

    async def resolve(
        self,
        title: Optional[str],
        media_type: str,
        external_id: Optional[int] = None,
    ) -> Optional[int]:
        """Return the catalog id for a title, or None.

        Order: exact (case-insensitive) on title / title_fr / title_orig,
        then substring on those plus alt_titles, then the same two steps for
        every variant the metadata API knows for external_id. First hit wins.
        """
        if media_type not in EXTERNAL_MEDIA_TYPES:
            return None
        t = (title or "").strip()
        if not t:
            return None

        match = await self.find_by_title(t, media_type)
        if match:
            return match

        if not external_id or self.metadata is None:
            return None

        record = await self._fetch_variants(media_type, external_id)
        if record is None:
            return None

        variants = record.all_titles()
        logger.debug(f"MAL ID {external_id} has {len(variants)} title variants: {', '.join(variants)}")
        for variant in variants:
            match = await self.find_by_title(variant, media_type)
            if match:
                logger.debug(f'Matched "{t}" via variant "{variant}" -> {media_type} {match}')
                return match
        return None

    async def find_by_title(self, title: str, media_type: str) -> Optional[int]:
        """Exact then substring match against published catalog entries."""
        t = title.strip()
        if not t:
            return None
        catalog, _ = MEDIA_MODELS[media_type]
        needle = t.lower()

        exact = await self.db.execute(
            select(catalog.id)
            .where(
                catalog.status == PUBLISHED,
                or_(
                    func.lower(catalog.title) == needle,
                    func.lower(catalog.title_fr) == needle,
                    func.lower(catalog.title_orig) == needle,
                ),
            )
            .order_by(catalog.id)
            .limit(1)
        )
        found = exact.scalar_one_or_none()
        if found:
            return found

        contains = await self.db.execute(
            select(catalog.id)
            .where(
                catalog.status == PUBLISHED,
                or_(
                    catalog.title.icontains(t, autoescape=True),
                    catalog.title_fr.icontains(t, autoescape=True),
                    catalog.title_orig.icontains(t, autoescape=True),
                    catalog.alt_titles.icontains(t, autoescape=True),
                ),
            )
            .order_by(catalog.id)
            .limit(1)
        )
        return contains.scalar_one_or_none()

    async def _fetch_variants(self, media_type: str, external_id: int) -> Optional[MetadataRecord]:
        try:
            if media_type == "anime":
                return await self.metadata.get_anime_by_id(external_id)
            return await self.metadata.get_manga_by_id(external_id)
        except Exception as e:
            # Enrichment is optional; a flaky API must not fail the lookup.
            logger.warning(f"Metadata fetch failed for {media_type} MAL ID {external_id}: {e}")
            return None
