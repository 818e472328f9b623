"""SQLAlchemy ORM models: all database tables."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    Integer, SmallInteger, String, Text, Boolean, DateTime,
    Numeric, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mediashelf.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


PUBLISHED = 1


# ── Users ────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(300))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ── Catalog ──────────────────────────────────────────────────────

class Anime(Base):
    __tablename__ = "animes"
    __table_args__ = (
        Index("idx_animes_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    title_fr: Mapped[Optional[str]] = mapped_column(String(500))
    title_orig: Mapped[Optional[str]] = mapped_column(String(500))
    alt_titles: Mapped[Optional[str]] = mapped_column(Text)   # newline separated
    status: Mapped[int] = mapped_column(SmallInteger, default=PUBLISHED)  # 1 = published
    year: Mapped[Optional[int]] = mapped_column(Integer)
    episodes: Mapped[Optional[int]] = mapped_column(Integer)
    format: Mapped[Optional[str]] = mapped_column(String(50))  # "Série TV" | "OAV" | "Film" ...


class Manga(Base):
    __tablename__ = "mangas"
    __table_args__ = (
        Index("idx_mangas_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    title_fr: Mapped[Optional[str]] = mapped_column(String(500))
    title_orig: Mapped[Optional[str]] = mapped_column(String(500))
    alt_titles: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[int] = mapped_column(SmallInteger, default=PUBLISHED)
    year: Mapped[Optional[int]] = mapped_column(Integer)
    volumes: Mapped[Optional[int]] = mapped_column(Integer)


class Game(Base):
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    title_fr: Mapped[Optional[str]] = mapped_column(String(500))
    title_orig: Mapped[Optional[str]] = mapped_column(String(500))
    alt_titles: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[int] = mapped_column(SmallInteger, default=PUBLISHED)
    year: Mapped[Optional[int]] = mapped_column(Integer)
    platforms: Mapped[Optional[str]] = mapped_column(String(300))


# ── Collections ──────────────────────────────────────────────────
# One row per (user, media). status: 1 completed | 2 watching |
# 3 plan-to-watch | 4 dropped | 5 on-hold. rating: 0-5 in 0.5 steps.

class CollectionAnime(Base):
    __tablename__ = "collection_animes"
    __table_args__ = (
        UniqueConstraint("user_id", "media_id", name="uq_collection_animes_user_media"),
        Index("idx_collection_animes_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    media_id: Mapped[int] = mapped_column(ForeignKey("animes.id", ondelete="CASCADE"))
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    rating: Mapped[float] = mapped_column(Numeric(3, 1, asdecimal=False), default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    episodes_watched: Mapped[int] = mapped_column(Integer, default=0)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CollectionManga(Base):
    __tablename__ = "collection_mangas"
    __table_args__ = (
        UniqueConstraint("user_id", "media_id", name="uq_collection_mangas_user_media"),
        Index("idx_collection_mangas_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    media_id: Mapped[int] = mapped_column(ForeignKey("mangas.id", ondelete="CASCADE"))
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    rating: Mapped[float] = mapped_column(Numeric(3, 1, asdecimal=False), default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    chapters_read: Mapped[int] = mapped_column(Integer, default=0)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class CollectionGame(Base):
    __tablename__ = "collection_games"
    __table_args__ = (
        UniqueConstraint("user_id", "media_id", name="uq_collection_games_user_media"),
        Index("idx_collection_games_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    media_id: Mapped[int] = mapped_column(ForeignKey("games.id", ondelete="CASCADE"))
    status: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    rating: Mapped[float] = mapped_column(Numeric(3, 1, asdecimal=False), default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    platform_played: Mapped[Optional[str]] = mapped_column(String(100))
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# media_type -> (catalog model, collection model)
MEDIA_MODELS = {
    "anime": (Anime, CollectionAnime),
    "manga": (Manga, CollectionManga),
    "game": (Game, CollectionGame),
}
