"""Status and score mapping between MyAnimeList and our collection model."""

import re
from typing import Optional

from mediashelf.errors import ValidationError

MEDIA_TYPES = ("anime", "manga", "game")
EXTERNAL_MEDIA_TYPES = ("anime", "manga")

STATUS_CODES = {
    "completed": 1,
    "watching": 2,
    "plan-to-watch": 3,
    "dropped": 4,
    "on-hold": 5,
}
STATUS_NAMES = {code: name for name, code in STATUS_CODES.items()}
DEFAULT_STATUS = "plan-to-watch"

# Whitespace-stripped, lowercased MAL spellings
_EXTERNAL_STATUSES = {
    "completed": "completed",
    "watching": "watching",
    "onhold": "on-hold",
    "on-hold": "on-hold",
    "dropped": "dropped",
    "plantowatch": "plan-to-watch",
    "plan-to-watch": "plan-to-watch",
    "plantoread": "plan-to-watch",
    "plan-to-read": "plan-to-watch",
}

# MAL series_type: 1 TV | 2 OVA | 3 Movie | 4 Special | 5 ONA | 6 Music
_FORMAT_TYPES = (
    (("tv",), 1),
    (("ova", "oav"), 2),
    (("movie", "film"), 3),
    (("special",), 4),
    (("ona",), 5),
    (("music", "clip"), 6),
)


def normalize_status(raw_status: Optional[str], media_type: str) -> str:
    """Map a MAL status onto our vocabulary. Unknown values become plan-to-watch."""
    s = re.sub(r"\s+", "", raw_status or "").lower()
    if media_type == "manga" and s == "reading":
        return "watching"
    return _EXTERNAL_STATUSES.get(s, DEFAULT_STATUS)


def normalize_score(raw_score: Optional[float]) -> Optional[float]:
    """MAL 0-10 score to our 0-5 scale. None means "not rated", not zero."""
    if raw_score is None:
        return None
    clamped = max(0.0, min(10.0, float(raw_score)))
    return clamped / 2


def status_code(name: str) -> int:
    try:
        return STATUS_CODES[name]
    except KeyError:
        raise ValidationError(f"Unknown collection status: {name}") from None


def status_name(code: int) -> str:
    return STATUS_NAMES.get(code, DEFAULT_STATUS)


def check_media_type(media_type: str, allowed: tuple = MEDIA_TYPES) -> str:
    if media_type not in allowed:
        raise ValidationError(f"Unsupported media type: {media_type}")
    return media_type


def validate_rating(rating: float) -> float:
    """Ratings are 0-5 in half steps."""
    if rating < 0 or rating > 5:
        raise ValidationError("Rating must be between 0 and 5")
    if (rating * 2) != int(rating * 2):
        raise ValidationError("Rating must be in 0.5 increments (e.g. 3.5, 4.0, 4.5)")
    return float(rating)


def to_external_status(code: int, media_type: str) -> str:
    """Our status code to the MAL export vocabulary."""
    reading = media_type == "manga"
    if code == 1:
        return "Completed"
    if code == 2:
        return "Reading" if reading else "Watching"
    if code == 4:
        return "Dropped"
    if code == 5:
        return "On-Hold"
    return "Plan to Read" if reading else "Plan to Watch"


def format_to_external_type(fmt: Optional[str]) -> int:
    f = (fmt or "").lower()
    for needles, type_id in _FORMAT_TYPES:
        if any(n in f for n in needles):
            return type_id
    return 1
