"""Domain DTOs shared by the curation pipeline."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

from .errors import InvalidInputError

MatchMethod = Literal["exact", "fuzzy"]


def _coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_genres(genres: Iterable[Any] | None) -> list[str]:
    """Trim, lower-case, de-duplicate and sort genre names."""

    if not genres:
        return []
    cleaned = {str(genre).strip().lower() for genre in genres if genre is not None}
    cleaned.discard("")
    return sorted(cleaned)


@dataclass(slots=True, frozen=True)
class Event:
    """One listing returned by the event source."""

    artist_name: str
    starts_at: str | None = None
    venue_name: str | None = None
    image_url: str | None = None
    ticket_url: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Event | None":
        """Build an event from a raw listing; ``None`` when it has no artist."""

        artist = _coerce_str(payload.get("artistName"))
        if artist is None:
            return None
        venue = payload.get("venueName")
        if venue is None and isinstance(payload.get("venue"), Mapping):
            venue = payload["venue"].get("name")
        return cls(
            artist_name=artist,
            starts_at=_coerce_str(payload.get("startsAt") or payload.get("startDate")),
            venue_name=_coerce_str(venue),
            image_url=_coerce_str(payload.get("artistImageSrc") or payload.get("imageSrc")),
            ticket_url=_coerce_str(payload.get("eventUrl") or payload.get("ticketUrl")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "artistName": self.artist_name,
            "startsAt": self.starts_at,
            "venueName": self.venue_name,
            "imageUrl": self.image_url,
            "ticketUrl": self.ticket_url,
        }


@dataclass(slots=True, frozen=True)
class MatchedArtist:
    id: str
    name: str
    genres: tuple[str, ...] = ()
    method: MatchMethod = "exact"
    distance: int = 0


@dataclass(slots=True, frozen=True)
class PlaylistJobRequest:
    """Validated, normalised parameters of a curation request."""

    city: str
    latitude: float
    longitude: float
    search_date: str
    number_of_songs: int = 2
    excluded_genres: tuple[str, ...] = field(default_factory=tuple)
    min_start_hour: int = 0
    max_start_hour: int = 24
    owner_id: str | None = None

    def __post_init__(self) -> None:
        city = (self.city or "").strip()
        if not city:
            raise InvalidInputError("city must not be empty")
        object.__setattr__(self, "city", city)
        if not -90.0 <= float(self.latitude) <= 90.0:
            raise InvalidInputError("latitude must be between -90 and 90")
        if not -180.0 <= float(self.longitude) <= 180.0:
            raise InvalidInputError("longitude must be between -180 and 180")
        try:
            parsed = date.fromisoformat(str(self.search_date).strip())
        except ValueError as exc:
            raise InvalidInputError("date must be formatted as YYYY-MM-DD") from exc
        object.__setattr__(self, "search_date", parsed.isoformat())
        if int(self.number_of_songs) < 1:
            raise InvalidInputError("numberOfSongs must be at least 1")
        if not 0 <= int(self.min_start_hour) < int(self.max_start_hour) <= 24:
            raise InvalidInputError("start time window must satisfy 0 <= min < max <= 24")
        object.__setattr__(self, "excluded_genres", tuple(normalize_genres(self.excluded_genres)))


__all__ = [
    "Event",
    "MatchMethod",
    "MatchedArtist",
    "PlaylistJobRequest",
    "normalize_genres",
]
