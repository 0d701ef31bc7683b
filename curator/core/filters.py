"""Start-time window and genre exclusion filters."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
import re

from .types import Event

# Umbrella genres a user can exclude, widened to the tags the catalog
# actually puts on artists.
GENRE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "electronic": (
        "electronic",
        "electronica",
        "techno",
        "house",
        "edm",
        "trance",
        "dubstep",
        "drum and bass",
        "dnb",
        "electro",
        "idm",
        "ambient",
        "breakbeat",
    ),
    "rock": ("rock", "punk", "grunge", "garage", "shoegaze", "emo"),
    "metal": ("metal", "metalcore", "deathcore", "djent", "hardcore"),
    "hip hop": ("hip hop", "rap", "trap", "drill", "grime"),
    "pop": ("pop", "k-pop", "dance pop", "synthpop"),
    "country": ("country", "americana", "bluegrass", "honky tonk"),
    "jazz": ("jazz", "bebop", "swing", "big band"),
    "r&b": ("r&b", "soul", "neo soul", "funk"),
    "latin": ("latin", "reggaeton", "salsa", "bachata", "cumbia"),
    "classical": ("classical", "orchestra", "opera", "baroque", "chamber"),
    "folk": ("folk", "singer-songwriter", "acoustic"),
    "reggae": ("reggae", "dancehall", "ska"),
    "blues": ("blues",),
}
GENRE_SYNONYMS["hip-hop"] = GENRE_SYNONYMS["hip hop"]
GENRE_SYNONYMS["rnb"] = GENRE_SYNONYMS["r&b"]

_HOUR_PATTERN = re.compile(r"T(\d{1,2}):\d{2}")


def event_start_hour(starts_at: str | None) -> int | None:
    """Return the wall-clock hour written in an event timestamp.

    Listings carry the venue's local start time, so a trailing offset
    (``Z`` included) is read as written and never converted to another zone.
    Returns ``None`` when the value is unreadable.
    """

    if not starts_at:
        return None
    text = starts_at.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).hour
    except ValueError:
        match = _HOUR_PATTERN.search(text)
        if match is None:
            return None
        hour = int(match.group(1))
        return hour if 0 <= hour < 24 else None


def filter_events_by_start_hour(
    events: Iterable[Event],
    *,
    min_hour: int = 0,
    max_hour: int = 24,
) -> list[Event]:
    """Keep events starting in ``[min_hour, max_hour)``.

    Events whose start time cannot be read are always kept.
    """

    kept: list[Event] = []
    for event in events:
        hour = event_start_hour(event.starts_at)
        if hour is None or min_hour <= hour < max_hour:
            kept.append(event)
    return kept


def expand_excluded_genres(genres: Iterable[str]) -> tuple[str, ...]:
    """Widen excluded genre names through :data:`GENRE_SYNONYMS`."""

    expanded: list[str] = []
    for genre in genres:
        key = genre.strip().lower()
        if not key:
            continue
        for term in GENRE_SYNONYMS.get(key, (key,)):
            if term not in expanded:
                expanded.append(term)
    return tuple(expanded)


def find_excluded_genre(artist_genres: Sequence[str], excluded_terms: Sequence[str]) -> str | None:
    """Return the first artist genre tag containing any excluded term."""

    if not excluded_terms:
        return None
    for tag in artist_genres:
        lowered = tag.lower()
        if any(term in lowered for term in excluded_terms):
            return tag
    return None


__all__ = [
    "GENRE_SYNONYMS",
    "event_start_hour",
    "expand_excluded_genres",
    "filter_events_by_start_hour",
    "find_excluded_genre",
]
