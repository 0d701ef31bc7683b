"""Curator core domain exports."""

from .errors import (
    CatalogCooldownError,
    CatalogError,
    CatalogRateLimitedError,
    CatalogRequestError,
    CatalogUnavailableError,
    InvalidInputError,
)
from .filters import expand_excluded_genres, filter_events_by_start_hour, find_excluded_genre
from .matching import dedupe_events, levenshtein, select_catalog_match
from .types import Event, MatchedArtist, PlaylistJobRequest, normalize_genres

__all__ = [
    "CatalogCooldownError",
    "CatalogError",
    "CatalogRateLimitedError",
    "CatalogRequestError",
    "CatalogUnavailableError",
    "Event",
    "InvalidInputError",
    "MatchedArtist",
    "PlaylistJobRequest",
    "dedupe_events",
    "expand_excluded_genres",
    "filter_events_by_start_hour",
    "find_excluded_genre",
    "levenshtein",
    "normalize_genres",
    "select_catalog_match",
]
