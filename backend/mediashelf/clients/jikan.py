"""Jikan client: read-only MyAnimeList metadata for title matching.

Jikan allows roughly one request per second. Every call goes through a
token bucket so callers never need their own sleeps.
"""

import logging
from typing import Optional

import httpx
from aiolimiter import AsyncLimiter

from mediashelf.clients.base import IMetadataProvider, MetadataRecord

logger = logging.getLogger(__name__)


class JikanClient(IMetadataProvider):
    """Jikan v4 API client."""

    BASE_URL = "https://api.jikan.moe/v4"

    def __init__(
        self,
        base_url: str = BASE_URL,
        max_rate: float = 1.0,
        time_period: float = 1.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Capacity: max_rate requests per time_period seconds
        self.limiter = AsyncLimiter(max_rate, time_period)
        self._transport = transport

    async def _get(self, path: str, params: dict | None = None) -> dict:
        """Rate-limited GET. Raises on transport or HTTP errors."""
        async with self.limiter:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            ) as client:
                resp = await client.get(f"{self.base_url}{path}", params=params)
                resp.raise_for_status()
                return resp.json()

    # ── IMetadataProvider implementation ──────────────────────────

    async def get_anime_by_id(self, external_id: int) -> Optional[MetadataRecord]:
        return await self._fetch_record("anime", external_id)

    async def get_manga_by_id(self, external_id: int) -> Optional[MetadataRecord]:
        return await self._fetch_record("manga", external_id)

    async def test_connection(self) -> bool:
        try:
            await self._get("/anime/1")
            return True
        except Exception:
            return False

    async def _fetch_record(self, media_type: str, external_id: int) -> Optional[MetadataRecord]:
        """Fetch one entry. Any failure means "no enrichment available"."""
        try:
            payload = await self._get(f"/{media_type}/{external_id}")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Jikan returned {e.response.status_code} for {media_type} MAL ID {external_id}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Jikan fetch failed for {media_type} MAL ID {external_id}: {e}")
            return None

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            logger.warning(f"Jikan returned no data for {media_type} MAL ID {external_id}")
            return None
        return self._normalize(data, media_type, external_id)

    # ── Normalization helpers ────────────────────────────────────

    @staticmethod
    def _normalize(data: dict, media_type: str, external_id: int) -> MetadataRecord:
        """Map a Jikan entry onto the title variants we match against."""
        titles = [
            t["title"] for t in data.get("titles") or []
            if isinstance(t, dict) and t.get("title")
        ]
        return MetadataRecord(
            external_id=data.get("mal_id") or external_id,
            title=data.get("title") or "",
            title_english=data.get("title_english"),
            title_japanese=data.get("title_japanese"),
            title_synonyms=[s for s in data.get("title_synonyms") or [] if s],
            titles=titles,
            media_type=media_type,
        )
