"""Export a user's collection in the MyAnimeList XML list format."""

import time
from typing import Optional
from xml.sax.saxutils import escape

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediashelf.models.tables import MEDIA_MODELS
from mediashelf.services.normalizer import (
    EXTERNAL_MEDIA_TYPES, check_media_type, format_to_external_type, to_external_status,
)

EXPORT_USER_NAME = "mediashelf"
_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def xml_escape(value: Optional[str]) -> str:
    """Escape & < > " ' for element text."""
    return escape(value or "", _XML_ENTITIES)


def export_filename(user_id: int, media_type: str, now: Optional[int] = None) -> str:
    ts = now if now is not None else int(time.time())
    prefix = "animelist" if media_type == "anime" else "mangalist"
    return f"{prefix}_{ts}_-_{user_id}.xml"


class CollectionExporter:
    """Renders collection entries as a MAL export document."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def export_collection(self, user_id: int, media_type: str = "anime", now: Optional[int] = None) -> str:
        check_media_type(media_type, EXTERNAL_MEDIA_TYPES)
        ts = now if now is not None else int(time.time())

        catalog, model = MEDIA_MODELS[media_type]
        result = await self.db.execute(
            select(model, catalog)
            .outerjoin(catalog, catalog.id == model.media_id)
            .where(model.user_id == user_id)
            .order_by(model.created_at.desc(), model.id.desc())
        )
        rows = result.all()

        if media_type == "anime":
            blocks = [self._anime_block(entry, media, ts) for entry, media in rows]
            header = [
                "    <user_export_type>1</user_export_type>",
                f"    <user_total_anime>{len(rows)}</user_total_anime>",
                "    <user_total_watching>0</user_total_watching>",
                "    <user_total_completed>0</user_total_completed>",
                "    <user_total_onhold>0</user_total_onhold>",
                "    <user_total_dropped>0</user_total_dropped>",
                "    <user_total_plantowatch>0</user_total_plantowatch>",
            ]
        else:
            blocks = [self._manga_block(entry, media, ts) for entry, media in rows]
            header = [
                "    <user_export_type>2</user_export_type>",
                f"    <user_total_manga>{len(rows)}</user_total_manga>",
            ]

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            "<myanimelist>",
            "  <myinfo>",
            f"    <user_id>{user_id}</user_id>",
            f"    <user_name>{EXPORT_USER_NAME}</user_name>",
            *header,
            "  </myinfo>",
            *blocks,
            "</myanimelist>",
        ]
        return "\n".join(lines)

    @staticmethod
    def _score10(entry) -> int | float:
        score = float(entry.rating or 0) * 2
        return int(score) if score.is_integer() else score

    def _anime_block(self, entry, anime, ts: int) -> str:
        return "\n".join([
            "  <anime>",
            f"    <series_animedb_id>{anime.id if anime else 0}</series_animedb_id>",
            f"    <series_title>{xml_escape(anime.title if anime else '')}</series_title>",
            f"    <series_type>{format_to_external_type(anime.format if anime else None)}</series_type>",
            f"    <series_episodes>{(anime.episodes if anime else None) or 0}</series_episodes>",
            "    <my_id>0</my_id>",
            f"    <my_watched_episodes>{entry.episodes_watched or 0}</my_watched_episodes>",
            "    <my_start_date>0000-00-00</my_start_date>",
            "    <my_finish_date>0000-00-00</my_finish_date>",
            f"    <my_score>{self._score10(entry)}</my_score>",
            f"    <my_status>{to_external_status(entry.status, 'anime')}</my_status>",
            "    <my_rewatching>0</my_rewatching>",
            "    <my_rewatching_ep>0</my_rewatching_ep>",
            "    <my_times_watched>0</my_times_watched>",
            "    <my_time_watched>0</my_time_watched>",
            f"    <my_last_updated>{ts}</my_last_updated>",
            "    <my_tags></my_tags>",
            "  </anime>",
        ])

    def _manga_block(self, entry, manga, ts: int) -> str:
        return "\n".join([
            "  <manga>",
            f"    <manga_mangadb_id>{manga.id if manga else 0}</manga_mangadb_id>",
            f"    <manga_title>{xml_escape(manga.title if manga else '')}</manga_title>",
            "    <manga_chapters>0</manga_chapters>",
            f"    <manga_volumes>{(manga.volumes if manga else None) or 0}</manga_volumes>",
            "    <my_id>0</my_id>",
            f"    <my_read_chapters>{entry.chapters_read or 0}</my_read_chapters>",
            "    <my_read_volumes>0</my_read_volumes>",
            "    <my_start_date>0000-00-00</my_start_date>",
            "    <my_finish_date>0000-00-00</my_finish_date>",
            f"    <my_score>{self._score10(entry)}</my_score>",
            f"    <my_status>{to_external_status(entry.status, 'manga')}</my_status>",
            "    <my_rereadingg>0</my_rereadingg>",
            "    <my_rereading_chap>0</my_rereading_chap>",
            f"    <my_last_updated>{ts}</my_last_updated>",
            "    <my_tags></my_tags>",
            "  </manga>",
        ])
