"""Shared fakes for curator tests."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from curator.config import CatalogConfig, ScraperConfig, WorkerPoolConfig
from curator.core.types import Event, PlaylistJobRequest


def make_catalog_config(**overrides: Any) -> CatalogConfig:
    values: dict[str, Any] = {
        "max_attempts": 3,
        "default_retry_after_s": 5.0,
        "server_error_delay_s": 3.0,
        "fuzzy_max_distance": 1,
        "search_limit": 10,
        "cooldown_threshold_s": 60.0,
        "default_tracks_per_artist": 2,
    }
    values.update(overrides)
    return CatalogConfig(**values)


def make_worker_config(**overrides: Any) -> WorkerPoolConfig:
    values: dict[str, Any] = {
        "enabled": True,
        "pool_size": 1,
        "interval_s": 0.01,
        "stagger_s": 0.0,
        "shutdown_grace_ms": 2_000,
        "build_timeout_minutes": 30,
        "stale_after_minutes": 5,
        "orphan_idle_s": 60.0,
    }
    values.update(overrides)
    return WorkerPoolConfig(**values)


def make_scraper_config(**overrides: Any) -> ScraperConfig:
    values: dict[str, Any] = {
        "base_url": "https://events.test",
        "page_delay_s": 0.0,
        "browser_page_delay_s": 0.0,
        "timeout_s": 5.0,
        "browser_timeout_ms": 5_000,
        "max_pages": 5,
        "browser_enabled": True,
        "proxy": None,
    }
    values.update(overrides)
    return ScraperConfig(**values)


def make_request(**overrides: Any) -> PlaylistJobRequest:
    values: dict[str, Any] = {
        "city": "Berlin",
        "latitude": 52.52,
        "longitude": 13.405,
        "search_date": "2026-11-07",
    }
    values.update(overrides)
    return PlaylistJobRequest(**values)


def events_for(*names: str, starts_at: str = "2026-11-07T20:00:00") -> list[Event]:
    return [Event(artist_name=name, starts_at=starts_at) for name in names]


class FakeEventSource:
    def __init__(self, events: Iterable[Event] = ()) -> None:
        self.events = list(events)
        self.calls: list[tuple[str, float, float]] = []

    async def fetch_events(self, search_date: str, latitude: float, longitude: float) -> list[Event]:
        self.calls.append((search_date, latitude, longitude))
        return list(self.events)


class FakeSpotify:
    """In-memory catalog keyed by artist name.

    ``errors`` maps a method name to exceptions raised, in order, before the
    method starts answering normally.
    """

    def __init__(self) -> None:
        self.artists: dict[str, list[dict[str, Any]]] = {}
        self.top_tracks: dict[str, list[dict[str, Any]]] = {}
        self.errors: dict[str, list[Exception]] = {}
        self.created: list[tuple[str, str]] = []
        self.added: dict[str, list[str]] = {}
        self.unfollowed: list[str] = []
        self.search_calls: list[str] = []

    def add_artist(
        self,
        name: str,
        *,
        artist_id: str | None = None,
        genres: Iterable[str] = (),
        tracks: int = 3,
        query: str | None = None,
    ) -> str:
        identifier = artist_id or f"id-{name.lower().replace(' ', '-')}"
        self.artists.setdefault(query or name, []).append(
            {"id": identifier, "name": name, "genres": list(genres)}
        )
        self.top_tracks[identifier] = [
            {"uri": f"spotify:track:{identifier}-{index}"} for index in range(tracks)
        ]
        return identifier

    def _maybe_raise(self, method: str) -> None:
        pending = self.errors.get(method)
        if pending:
            raise pending.pop(0)

    def search_artists(self, name: str, *, limit: int = 10) -> list[dict[str, Any]]:
        self.search_calls.append(name)
        self._maybe_raise("search_artists")
        return list(self.artists.get(name, []))[:limit]

    def get_artist_top_tracks(
        self, artist_id: str, *, market: str | None = None
    ) -> list[dict[str, Any]]:
        self._maybe_raise("get_artist_top_tracks")
        return list(self.top_tracks.get(artist_id, []))

    def create_playlist(self, name: str, *, description: str, public: bool = True) -> str:
        self._maybe_raise("create_playlist")
        playlist_id = f"playlist-{len(self.created) + 1}"
        self.created.append((playlist_id, name))
        self.added[playlist_id] = []
        return playlist_id

    def add_tracks(self, playlist_id: str, track_uris: list[str]) -> None:
        self._maybe_raise("add_tracks")
        self.added.setdefault(playlist_id, []).extend(track_uris)

    def unfollow_playlist(self, playlist_id: str) -> None:
        self.unfollowed.append(playlist_id)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
