"""Spotify client wrapper used by the curation pipeline."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
import threading
import time
from typing import Any, Callable, Mapping, Optional, TypeVar

import requests
import spotipy
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth

from curator.config import SpotifyConfig
from curator.logging import get_logger

from .errors import (
    CatalogRateLimitedError,
    CatalogRequestError,
    CatalogUnavailableError,
)

logger = get_logger(__name__)

T = TypeVar("T")

PLAYLIST_ADD_BATCH = 100


def parse_retry_after(value: Any) -> float | None:
    """Return the wait in seconds requested by a ``Retry-After`` value."""

    if value is None or value == "":
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        pass
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return max(0.0, (parsed - datetime.now(UTC)).total_seconds())


def _header(headers: Mapping[str, Any] | None, name: str) -> Any:
    if not headers:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return None


def translate_spotify_error(exc: Exception) -> Exception:
    """Map spotipy/requests failures onto the catalog error taxonomy."""

    if isinstance(exc, SpotifyException):
        status = getattr(exc, "http_status", None)
        message = str(getattr(exc, "msg", None) or exc)
        if status == 429:
            retry_after = parse_retry_after(_header(getattr(exc, "headers", None), "Retry-After"))
            return CatalogRateLimitedError(message, retry_after_s=retry_after)
        if status is None or status >= 500:
            return CatalogUnavailableError(message, status=status)
        return CatalogRequestError(message, status=status)
    if isinstance(exc, requests.exceptions.RequestException):
        return CatalogUnavailableError(f"Spotify request failed: {exc}")
    return exc


class SpotifyClient:
    """Thin client around Spotipy with request pacing and error translation.

    Retries are left to callers: every failure surfaces as a
    :class:`~curator.core.errors.CatalogError` subclass so the pipeline can
    decide how long to wait and what to log.
    """

    def __init__(
        self,
        config: SpotifyConfig,
        client: Optional[spotipy.Spotify] = None,
        rate_limit_seconds: float | None = None,
    ) -> None:
        self._config = config
        self._rate_limit_seconds = (
            config.rate_limit_seconds if rate_limit_seconds is None else rate_limit_seconds
        )
        self._lock = threading.Lock()
        self._last_request_time = 0.0
        self._user_id: str | None = config.user_id

        if client is not None:
            self._client = client
        else:
            if not config.is_configured:
                raise ValueError("Spotify configuration is incomplete")

            # The stored refresh token is exchanged for an access token on first use.
            cache_handler = MemoryCacheHandler(
                token_info={
                    "access_token": "",
                    "refresh_token": config.refresh_token,
                    "expires_at": 0,
                    "scope": config.scope,
                    "token_type": "Bearer",
                }
            )
            auth_manager = SpotifyOAuth(
                client_id=config.client_id,
                client_secret=config.client_secret,
                redirect_uri=config.redirect_uri,
                scope=config.scope,
                cache_handler=cache_handler,
                open_browser=False,
            )
            # A plain session keeps spotipy from mounting its own retry adapter,
            # which would hide 429/5xx responses and their Retry-After header.
            self._client = spotipy.Spotify(
                auth_manager=auth_manager,
                requests_session=requests.Session(),
                requests_timeout=config.timeout_s,
                retries=0,
                status_retries=0,
            )

    def _respect_rate_limit(self) -> None:
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._rate_limit_seconds:
                time.sleep(self._rate_limit_seconds - elapsed)
            self._last_request_time = time.monotonic()

    def _execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        self._respect_rate_limit()
        try:
            return func(*args, **kwargs)
        except (SpotifyException, requests.exceptions.RequestException) as exc:
            translated = translate_spotify_error(exc)
            logger.warning(
                "Spotify API request failed: %s",
                translated,
                extra={"event": "catalog.error", "status": getattr(translated, "status", None)},
            )
            raise translated from exc

    def current_user_id(self) -> str:
        if self._user_id is None:
            profile = self._execute(self._client.current_user)
            self._user_id = str(profile["id"])
        return self._user_id

    def search_artists(self, name: str, *, limit: int = 10) -> list[dict[str, Any]]:
        response = self._execute(self._client.search, q=name, type="artist", limit=limit)
        artists = (response or {}).get("artists") or {}
        return [item for item in artists.get("items") or [] if item]

    def get_artist_top_tracks(self, artist_id: str, *, market: str | None = None) -> list[dict]:
        response = self._execute(
            self._client.artist_top_tracks,
            artist_id,
            country=market or self._config.market,
        )
        return [track for track in (response or {}).get("tracks") or [] if track]

    def create_playlist(self, name: str, *, description: str, public: bool = True) -> str:
        user_id = self.current_user_id()
        playlist = self._execute(
            self._client.user_playlist_create,
            user_id,
            name,
            public=public,
            description=description,
        )
        return str(playlist["id"])

    def add_tracks(self, playlist_id: str, track_uris: list[str]) -> None:
        for start in range(0, len(track_uris), PLAYLIST_ADD_BATCH):
            batch = track_uris[start : start + PLAYLIST_ADD_BATCH]
            self._execute(self._client.playlist_add_items, playlist_id, batch)

    def unfollow_playlist(self, playlist_id: str) -> None:
        self._execute(self._client.current_user_unfollow_playlist, playlist_id)


__all__ = ["SpotifyClient", "parse_retry_after", "translate_spotify_error"]
