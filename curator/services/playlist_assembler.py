"""Remote playlist lifecycle: create, fill, and roll back when empty."""

from __future__ import annotations

import asyncio
from typing import Protocol

from curator.core.types import PlaylistJobRequest
from curator.logging import get_logger
from curator.logging_events import log_event

logger = get_logger(__name__)


class PlaylistClient(Protocol):
    def create_playlist(self, name: str, *, description: str, public: bool = True) -> str: ...

    def add_tracks(self, playlist_id: str, track_uris: list[str]) -> None: ...

    def unfollow_playlist(self, playlist_id: str) -> None: ...


def build_playlist_name(request: PlaylistJobRequest) -> str:
    return f"{request.city} {request.search_date} live music"


def build_playlist_description(request: PlaylistJobRequest) -> str:
    parts = [
        f"Artists performing in {request.city} on {request.search_date}, "
        "curated by Live Music Curator."
    ]
    if request.min_start_hour > 0 or request.max_start_hour < 24:
        parts.append(
            f"Shows starting {request.min_start_hour:02d}:00-{request.max_start_hour:02d}:00."
        )
    if request.excluded_genres:
        parts.append(f"Excluding {', '.join(request.excluded_genres)}.")
    # Spotify caps descriptions at 300 characters.
    return " ".join(parts)[:300]


class PlaylistAssembler:
    def __init__(self, client: PlaylistClient) -> None:
        self._client = client

    async def create(self, request: PlaylistJobRequest) -> str:
        playlist_id = await asyncio.to_thread(
            self._client.create_playlist,
            build_playlist_name(request),
            description=build_playlist_description(request),
            public=True,
        )
        log_event(
            logger,
            "playlist.create",
            component="playlist_assembler",
            status="created",
            playlist_id=playlist_id,
        )
        return playlist_id

    async def append(self, playlist_id: str, track_uris: list[str]) -> None:
        if track_uris:
            await asyncio.to_thread(self._client.add_tracks, playlist_id, list(track_uris))

    async def rollback(self, playlist_id: str) -> None:
        """Unfollow (Spotify's delete) a playlist that ended up empty."""

        await asyncio.to_thread(self._client.unfollow_playlist, playlist_id)
        log_event(
            logger,
            "playlist.rollback",
            component="playlist_assembler",
            status="unfollowed",
            playlist_id=playlist_id,
        )


__all__ = [
    "PlaylistAssembler",
    "PlaylistClient",
    "build_playlist_description",
    "build_playlist_name",
]
