from __future__ import annotations

from typing import Any

import pytest
import requests
from spotipy.exceptions import SpotifyException

from curator.config import SpotifyConfig
from curator.core.errors import (
    CatalogRateLimitedError,
    CatalogRequestError,
    CatalogUnavailableError,
)
from curator.core.spotify_client import SpotifyClient, parse_retry_after, translate_spotify_error


def _config() -> SpotifyConfig:
    return SpotifyConfig(
        client_id="client",
        client_secret="secret",
        refresh_token="refresh",
        user_id=None,
        redirect_uri="http://127.0.0.1/callback",
        scope="playlist-modify-public",
        market="DE",
        timeout_s=5.0,
        rate_limit_seconds=0.0,
    )


class _StubSpotipy:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def current_user(self) -> dict[str, Any]:
        self._record("current_user")
        return {"id": "curator-user"}

    def search(self, **kwargs: Any) -> dict[str, Any]:
        self._record("search", **kwargs)
        return {"artists": {"items": [{"id": "a1", "name": "Foo"}, None]}}

    def artist_top_tracks(self, artist_id: str, country: str | None = None) -> dict[str, Any]:
        self._record("artist_top_tracks", artist_id, country=country)
        return {"tracks": [{"uri": "spotify:track:1"}]}

    def user_playlist_create(self, user: str, name: str, **kwargs: Any) -> dict[str, Any]:
        self._record("user_playlist_create", user, name, **kwargs)
        return {"id": "pl-1"}

    def playlist_add_items(self, playlist_id: str, items: list[str]) -> None:
        self._record("playlist_add_items", playlist_id, items)

    def current_user_unfollow_playlist(self, playlist_id: str) -> None:
        self._record("current_user_unfollow_playlist", playlist_id)


def test_retry_after_parsing() -> None:
    assert parse_retry_after("7") == 7.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None
    assert parse_retry_after("-3") == 0.0


def test_translate_rate_limit_reads_retry_after_header() -> None:
    exc = SpotifyException(429, -1, "too many", headers={"retry-after": "12"})

    translated = translate_spotify_error(exc)

    assert isinstance(translated, CatalogRateLimitedError)
    assert translated.retry_after_s == 12.0


@pytest.mark.parametrize(
    "status,expected",
    [(500, CatalogUnavailableError), (503, CatalogUnavailableError), (404, CatalogRequestError)],
)
def test_translate_status_codes(status: int, expected: type) -> None:
    assert isinstance(translate_spotify_error(SpotifyException(status, -1, "boom")), expected)


def test_translate_transport_errors_as_unavailable() -> None:
    translated = translate_spotify_error(requests.exceptions.ConnectionError("reset"))

    assert isinstance(translated, CatalogUnavailableError)


def test_client_wraps_spotipy_calls() -> None:
    stub = _StubSpotipy()
    client = SpotifyClient(_config(), client=stub)  # type: ignore[arg-type]

    assert client.search_artists("Foo", limit=5) == [{"id": "a1", "name": "Foo"}]
    assert client.get_artist_top_tracks("a1") == [{"uri": "spotify:track:1"}]
    assert client.create_playlist("Berlin", description="d") == "pl-1"
    client.add_tracks("pl-1", [f"spotify:track:{index}" for index in range(150)])
    client.unfollow_playlist("pl-1")

    names = [name for name, _, _ in stub.calls]
    assert names.count("playlist_add_items") == 2
    assert ("artist_top_tracks", ("a1",), {"country": "DE"}) in stub.calls
    assert names[-1] == "current_user_unfollow_playlist"


def test_client_raises_catalog_errors() -> None:
    stub = _StubSpotipy()
    stub.fail_with = SpotifyException(429, -1, "slow down", headers={"Retry-After": "3"})
    client = SpotifyClient(_config(), client=stub)  # type: ignore[arg-type]

    with pytest.raises(CatalogRateLimitedError) as excinfo:
        client.search_artists("Foo")

    assert excinfo.value.retry_after_s == 3.0


def test_client_requires_credentials_without_injected_client() -> None:
    config = _config()
    config.refresh_token = None

    with pytest.raises(ValueError):
        SpotifyClient(config)
