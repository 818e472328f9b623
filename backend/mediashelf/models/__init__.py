"""Re-export all SQLAlchemy models for Alembic and import convenience."""

from mediashelf.models.tables import (  # noqa: F401
    User,
    Anime, Manga, Game,
    CollectionAnime, CollectionManga, CollectionGame,
    MEDIA_MODELS, PUBLISHED,
)
