"""Abstract interfaces for the external collaborators of the collection services.

Services receive these by injection: Redis, Jikan and SMTP in production,
in-memory fakes in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


# ── Data Transfer Objects ────────────────────────────────────────

@dataclass
class MetadataRecord:
    """Title variants of one MyAnimeList entry."""
    external_id: int
    title: str
    title_english: Optional[str] = None
    title_japanese: Optional[str] = None
    title_synonyms: list[str] = field(default_factory=list)
    titles: list[str] = field(default_factory=list)   # "titles" array, newer API format
    media_type: str = "anime"

    def all_titles(self) -> list[str]:
        """Every known variant, unique and non-empty, in lookup order."""
        candidates = [self.title, self.title_english, self.title_japanese]
        candidates.extend(self.title_synonyms)
        candidates.extend(self.titles)

        seen: list[str] = []
        for t in candidates:
            if t and t.strip() and t not in seen:
                seen.append(t)
        return seen


@dataclass
class ImportSummaryMail:
    """Figures rendered in the import summary email."""
    imported: int
    failed: int
    not_found: int
    total: int
    failed_items: list[dict] = field(default_factory=list)   # {"title", "reason"}


# ── Abstract Interfaces ──────────────────────────────────────────

class ICacheBackend(ABC):
    """Key-value cache with TTLs and glob-pattern deletes."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached JSON value, or None on a miss."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 300) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns the count."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...


class IMetadataProvider(ABC):
    """Third-party anime/manga metadata source (MyAnimeList via Jikan)."""

    @abstractmethod
    async def get_anime_by_id(self, external_id: int) -> Optional[MetadataRecord]:
        ...

    @abstractmethod
    async def get_manga_by_id(self, external_id: int) -> Optional[MetadataRecord]:
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        ...


class IMailer(ABC):
    """Outbound notification emails. Implementations never raise."""

    @abstractmethod
    async def send_import_summary_email(
        self, recipient: str, username: str, summary: ImportSummaryMail,
    ) -> bool:
        ...

    @abstractmethod
    async def send_import_failure_email(
        self, recipient: str, username: str, error_message: str,
    ) -> bool:
        ...
