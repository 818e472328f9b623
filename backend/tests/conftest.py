"""Shared fixtures: in-memory SQLite database, seeded catalog, and fakes
for the cache, metadata API and mailer."""

import json
from fnmatch import fnmatchcase
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from mediashelf.clients.base import (
    ICacheBackend, IMailer, IMetadataProvider, ImportSummaryMail, MetadataRecord,
)
from mediashelf.database import Base, make_session_factory
from mediashelf.models import Anime, Game, Manga, User


# ── Fakes ────────────────────────────────────────────────────────

class FakeCache(ICacheBackend):
    """Dict-backed cache with Redis-like glob deletes and JSON round trips."""

    def __init__(self, fail: bool = False):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = fail
        self.deleted_patterns: list[str] = []

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("cache unavailable")

    async def get(self, key: str) -> Optional[Any]:
        self._check()
        raw = self.store.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl: int = 300) -> None:
        self._check()
        self.store[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl

    async def delete(self, key: str) -> None:
        self._check()
        self.store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        self._check()
        self.deleted_patterns.append(pattern)
        matches = [k for k in self.store if fnmatchcase(k, pattern)]
        for k in matches:
            del self.store[k]
        return len(matches)

    async def ping(self) -> bool:
        return not self.fail


class FakeMetadata(IMetadataProvider):
    def __init__(self, records: Optional[dict[tuple[str, int], MetadataRecord]] = None, fail: bool = False):
        self.records = records or {}
        self.fail = fail
        self.calls: list[tuple[str, int]] = []

    async def _lookup(self, media_type: str, external_id: int) -> Optional[MetadataRecord]:
        self.calls.append((media_type, external_id))
        if self.fail:
            raise RuntimeError("metadata API down")
        return self.records.get((media_type, external_id))

    async def get_anime_by_id(self, external_id: int) -> Optional[MetadataRecord]:
        return await self._lookup("anime", external_id)

    async def get_manga_by_id(self, external_id: int) -> Optional[MetadataRecord]:
        return await self._lookup("manga", external_id)

    async def test_connection(self) -> bool:
        return not self.fail


class FakeMailer(IMailer):
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.summaries: list[tuple[str, str, ImportSummaryMail]] = []
        self.failures: list[tuple[str, str, str]] = []

    async def send_import_summary_email(self, recipient: str, username: str, summary: ImportSummaryMail) -> bool:
        self.summaries.append((recipient, username, summary))
        return self.succeed

    async def send_import_failure_email(self, recipient: str, username: str, error_message: str) -> bool:
        self.failures.append((recipient, username, error_message))
        return self.succeed


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def seeded(session_factory):
    """Two users and a small published catalog (plus one unpublished anime)."""
    async with session_factory() as session:
        session.add_all([
            User(id=1, username="alice", email="alice@example.com"),
            User(id=2, username="bob", email="bob@example.com"),
            Anime(id=1, title="Naruto", title_orig="NARUTO", year=2002, episodes=220, format="Série TV"),
            Anime(id=2, title="Fullmetal Alchemist: Brotherhood", year=2009, episodes=64, format="Série TV"),
            Anime(id=3, title="Kimi no Na wa.", title_fr="Your Name", year=2016, episodes=1, format="Film"),
            Anime(id=4, title="Shingeki no Kyojin", title_fr="L'Attaque des Titans",
                  alt_titles="Attack on Titan\nAoT", year=2013, episodes=25, format="Série TV"),
            Anime(id=5, title="Naruto Shippuden Draft", status=0, year=2007),
            Anime(id=6, title='Tom & Jerry\'s "<Show>"', year=1940, format="OAV"),
            Manga(id=1, title="Berserk", year=1989, volumes=41),
            Manga(id=2, title="One Piece", year=1997, volumes=105),
            Game(id=1, title="Chrono Trigger", year=1995, platforms="SNES"),
        ])
        await session.commit()
    return session_factory


@pytest_asyncio.fixture
async def db(seeded):
    async with seeded() as session:
        yield session


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def metadata():
    return FakeMetadata({
        ("anime", 5114): MetadataRecord(
            external_id=5114,
            title="Hagane no Renkinjutsushi: Fullmetal Alchemist",
            title_english="Fullmetal Alchemist: Brotherhood",
            title_synonyms=["Hagaren", "FMA:B"],
        ),
        ("manga", 2): MetadataRecord(
            external_id=2,
            title="Berserk",
            title_japanese="ベルセルク",
            media_type="manga",
        ),
    })
