"""Cache key templates for collection reads, and what each mutation invalidates.

Read paths build their keys with the helpers below; invalidation expands
the INVALIDATION table. Both come from the same templates, so a new read
path is invalidated as soon as its template is listed here.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class KeyTemplate:
    template: str
    pattern: bool = False      # glob delete (SCAN) rather than a single DEL

    def render(self, **params) -> str:
        return self.template.format(**params)


# ── Read keys ────────────────────────────────────────────────────

COLLECTION_ITEMS = "collection_items:{user_id}:{media_type}:{status}:{page}:{limit}"
COLLECTION_CHECK = "user_collection_check:{user_id}:{media_type}:{media_id}"
COLLECTION_RATINGS = "collection_ratings:{media_type}:{user_id}:{status}:{view}"
USER_SUMMARY = "find_user_collections:{user_id}:{view}"
MEDIA_COLLECTORS = "media_collectors:{media_type}:{media_id}:{page}:{limit}"
CATALOG_RECORD = "{media_type}:{media_id}"


def collection_items_key(user_id: int, media_type: Optional[str], status: Optional[str],
                         page: int, limit: int) -> str:
    return COLLECTION_ITEMS.format(
        user_id=user_id, media_type=media_type or "all", status=status or "all",
        page=page, limit=limit,
    )


def collection_check_key(user_id: int, media_type: str, media_id: int) -> str:
    return COLLECTION_CHECK.format(user_id=user_id, media_type=media_type, media_id=media_id)


def collection_ratings_key(user_id: int, media_type: str, status: Optional[str], own: bool) -> str:
    return COLLECTION_RATINGS.format(
        media_type=media_type, user_id=user_id, status=status or "all",
        view="own" if own else "public",
    )


def user_summary_key(user_id: int, own: bool) -> str:
    return USER_SUMMARY.format(user_id=user_id, view="own" if own else "public")


def media_collectors_key(media_type: str, media_id: int, page: int, limit: int) -> str:
    return MEDIA_COLLECTORS.format(media_type=media_type, media_id=media_id, page=page, limit=limit)


def import_notified_key(job_id: str) -> str:
    return f"import_email_sent:{job_id}"


# ── Invalidation table ───────────────────────────────────────────
# "collection": anything about a user's collection changed.
# "entry": one (user, media_type, media_id) entry changed.

INVALIDATION: dict[str, tuple[KeyTemplate, ...]] = {
    "collection": (
        KeyTemplate("user_collections:{user_id}:*", pattern=True),
        KeyTemplate("collection_items:{user_id}:*", pattern=True),
        KeyTemplate("collection_animes:{user_id}:*", pattern=True),
        KeyTemplate("collection_mangas:{user_id}:*", pattern=True),
        KeyTemplate("collection_games:{user_id}:*", pattern=True),
        KeyTemplate("user_collection_check:{user_id}:*", pattern=True),
        KeyTemplate("collection_ratings:*:{user_id}:*", pattern=True),
        KeyTemplate(USER_SUMMARY.replace("{view}", "own")),
        KeyTemplate(USER_SUMMARY.replace("{view}", "public")),
    ),
    "entry": (
        KeyTemplate(COLLECTION_CHECK),
        KeyTemplate("media_collectors:{media_type}:{media_id}:*", pattern=True),
        KeyTemplate(CATALOG_RECORD),
    ),
}


def affected_keys(mutation: str, **params) -> list[KeyTemplate]:
    """Render the templates a mutation touches, keeping the pattern flag."""
    return [
        KeyTemplate(t.render(**params), t.pattern)
        for t in INVALIDATION[mutation]
    ]
