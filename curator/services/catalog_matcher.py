"""Resolve scraped artist names to catalog artists and their top tracks."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Collection, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from curator.config import CatalogConfig
from curator.core.errors import (
    CatalogCooldownError,
    CatalogRateLimitedError,
    CatalogUnavailableError,
)
from curator.core.filters import find_excluded_genre
from curator.core.matching import select_catalog_match
from curator.core.types import MatchedArtist
from curator.logging import get_logger
from curator.logging_events import log_event
from curator.utils.retry import RetryDirective, with_retry

logger = get_logger(__name__)

T = TypeVar("T")

WaitCallback = Callable[[str], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


class CatalogClient(Protocol):
    def search_artists(self, name: str, *, limit: int = 10) -> list[dict[str, Any]]: ...

    def get_artist_top_tracks(
        self, artist_id: str, *, market: str | None = None
    ) -> list[dict[str, Any]]: ...


@dataclass(slots=True)
class ArtistResolution:
    """Outcome of looking up one scraped artist."""

    query: str
    artist: MatchedArtist | None = None
    skip_reason: str | None = None
    track_uris: list[str] = field(default_factory=list)
    duplicate: bool = False

    @property
    def accepted(self) -> bool:
        return self.artist is not None and not self.duplicate and self.skip_reason is None


class CatalogRetryController:
    """Run one unit of catalog work with the per-artist retry budget.

    429 waits for ``Retry-After`` (or the configured default), 5xx and
    transport failures wait a fixed delay, anything else is not retried. A
    ``Retry-After`` above the cool-down threshold raises
    :class:`CatalogCooldownError` immediately instead of sleeping.
    """

    def __init__(
        self,
        config: CatalogConfig,
        *,
        on_wait: WaitCallback | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._config = config
        self._on_wait = on_wait
        self._sleep = sleep

    def _classify(self, error: Exception) -> RetryDirective:
        if isinstance(error, CatalogRateLimitedError):
            wait_s = error.retry_after_s
            if wait_s is None:
                wait_s = self._config.default_retry_after_s
            if wait_s > self._config.cooldown_threshold_s:
                return RetryDirective(
                    retry=False,
                    error=CatalogCooldownError(
                        f"Spotify rate limit requires waiting {int(wait_s)}s",
                        retry_after_s=wait_s,
                    ),
                )
            return RetryDirective(retry=True, delay_override_ms=int(wait_s * 1000), error=error)
        if isinstance(error, CatalogUnavailableError):
            return RetryDirective(
                retry=True,
                delay_override_ms=int(self._config.server_error_delay_s * 1000),
                error=error,
            )
        return RetryDirective(retry=False, error=error)

    async def _announce(self, attempt: int, error: Exception, delay_ms: int) -> None:
        seconds = max(0, round(delay_ms / 1000))
        if isinstance(error, CatalogRateLimitedError):
            message = f"Rate limited by Spotify; retrying in {seconds}s"
        else:
            message = f"Spotify unavailable; retrying in {seconds}s"
        log_event(
            logger,
            "catalog.retry",
            component="catalog_matcher",
            status="waiting",
            attempt=attempt,
            delay_ms=delay_ms,
            error=type(error).__name__,
        )
        if self._on_wait is not None:
            await self._on_wait(message)

    async def run(self, unit: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            unit,
            attempts=self._config.max_attempts,
            base_ms=1,
            jitter_pct=0,
            timeout_ms=None,
            classify_err=self._classify,
            on_retry=self._announce,
            sleep=self._sleep,
        )


class CatalogMatcher:
    """Exact-then-fuzzy artist lookup plus top-track selection."""

    def __init__(
        self,
        client: CatalogClient,
        config: CatalogConfig,
        *,
        market: str | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._market = market

    async def find_artist(self, name: str) -> MatchedArtist | None:
        candidates = await asyncio.to_thread(
            self._client.search_artists, name, limit=self._config.search_limit
        )
        artist = select_catalog_match(
            name, candidates, max_distance=self._config.fuzzy_max_distance
        )
        log_event(
            logger,
            "catalog.match",
            component="catalog_matcher",
            status="matched" if artist is not None else "not_found",
            query=name,
            candidates=len(candidates),
            artist_id=artist.id if artist is not None else None,
            method=artist.method if artist is not None else None,
            distance=artist.distance if artist is not None else None,
        )
        return artist

    async def top_track_uris(self, artist_id: str, count: int) -> list[str]:
        tracks = await asyncio.to_thread(
            self._client.get_artist_top_tracks, artist_id, market=self._market
        )
        uris = [str(track["uri"]) for track in tracks if track.get("uri")]
        return uris[: max(0, int(count))]

    async def resolve(
        self,
        name: str,
        *,
        number_of_songs: int,
        excluded_terms: Sequence[str] = (),
        used_artist_ids: Collection[str] = (),
    ) -> ArtistResolution:
        """Look up ``name`` and decide whether its tracks belong in the playlist."""

        artist = await self.find_artist(name)
        if artist is None:
            return ArtistResolution(query=name, skip_reason="Not found")

        excluded_tag = find_excluded_genre(artist.genres, excluded_terms)
        if excluded_tag is not None:
            return ArtistResolution(
                query=name, artist=artist, skip_reason=f"Genre: {excluded_tag}"
            )

        if artist.id in used_artist_ids:
            return ArtistResolution(query=name, artist=artist, duplicate=True)

        uris = await self.top_track_uris(artist.id, number_of_songs)
        if not uris:
            return ArtistResolution(query=name, artist=artist, skip_reason="No tracks")
        return ArtistResolution(query=name, artist=artist, track_uris=uris)


__all__ = [
    "ArtistResolution",
    "CatalogClient",
    "CatalogMatcher",
    "CatalogRetryController",
]
