"""The curation pipeline run for one claimed job.

Stages: fetch events, apply the start-time window, dedupe by artist, persist
the event list, create the playlist, then resolve each artist against the
catalog and append its top tracks. Every stage reports into the job's log so
polling clients can follow along. The pipeline never writes the terminal
status itself; it returns a :class:`CurationResult` for the worker to commit.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from curator.config import CatalogConfig
from curator.core.errors import (
    CatalogCooldownError,
    CatalogRateLimitedError,
    CatalogRequestError,
    CatalogUnavailableError,
)
from curator.core.filters import expand_excluded_genres, filter_events_by_start_hour
from curator.core.matching import dedupe_events
from curator.core.types import Event, PlaylistJobRequest
from curator.logging import get_logger
from curator.logging_events import log_event
from curator.services import rate_limit_state
from curator.services.catalog_matcher import (
    ArtistResolution,
    CatalogMatcher,
    CatalogRetryController,
)
from curator.services.playlist_assembler import PlaylistAssembler
from curator.workers import persistence
from curator.workers.persistence import PlaylistJobDTO

logger = get_logger(__name__)

NO_EVENTS_MESSAGE = "No events found for this city and date."
NO_ARTISTS_MESSAGE = "No artists found on Spotify for these events."

Sleeper = Callable[[float], Awaitable[None]]


class EventSource(Protocol):
    async def fetch_events(
        self, search_date: str, latitude: float, longitude: float
    ) -> list[Event]: ...


class JobAbandonedError(RuntimeError):
    """The job left ``building`` (for example it was reaped) while running."""


@dataclass(slots=True)
class CurationResult:
    status: Literal["complete", "failed", "abandoned"]
    playlist_id: str | None = None
    error: str | None = None
    tracks_added: int = 0


class JobProgress:
    """Log and progress writer bound to one building job."""

    def __init__(self, job_id: int) -> None:
        self.job_id = job_id

    async def log(
        self,
        *entries: str,
        processed: int | None = None,
        total: int | None = None,
    ) -> None:
        ok = await asyncio.to_thread(
            persistence.append_job_log,
            self.job_id,
            entries,
            processed=processed,
            total=total,
        )
        if not ok:
            raise JobAbandonedError(f"job {self.job_id} is no longer building")

    async def warn(self, message: str) -> None:
        await self.log(f"WARNING:{message}")

    async def store_events(self, events: Sequence[Event]) -> None:
        ok = await asyncio.to_thread(
            persistence.store_events, self.job_id, [event.to_dict() for event in events]
        )
        if not ok:
            raise JobAbandonedError(f"job {self.job_id} is no longer building")


ProgressFactory = Callable[[int], JobProgress]


@dataclass(slots=True)
class CatalogAccount:
    """One catalog account with its own cool-down key."""

    provider: str
    matcher: CatalogMatcher
    assembler: PlaylistAssembler


@dataclass(slots=True)
class _PlaylistFill:
    tracks_added: int = 0


class CurationPipeline:
    def __init__(
        self,
        *,
        event_source: EventSource,
        catalog_client: Any,
        catalog_config: CatalogConfig,
        backup_client: Any = None,
        market: str | None = None,
        sleep: Sleeper = asyncio.sleep,
        progress_factory: ProgressFactory = JobProgress,
    ) -> None:
        self._event_source = event_source
        self._catalog_config = catalog_config
        self._accounts = [
            CatalogAccount(
                provider=provider,
                matcher=CatalogMatcher(client, catalog_config, market=market),
                assembler=PlaylistAssembler(client),
            )
            for provider, client in (
                (rate_limit_state.SPOTIFY_PROVIDER, catalog_client),
                (rate_limit_state.SPOTIFY_BACKUP_PROVIDER, backup_client),
            )
            if client is not None
        ]
        self._sleep = sleep
        self._progress_factory = progress_factory

    @property
    def providers(self) -> tuple[str, ...]:
        """Cool-down keys of the configured accounts, primary first."""

        return tuple(account.provider for account in self._accounts)

    async def run(self, job: PlaylistJobDTO) -> CurationResult:
        progress = self._progress_factory(job.id)
        try:
            return await self._run(job.to_request(), progress)
        except JobAbandonedError as exc:
            logger.warning("Stopping curation: %s", exc)
            return CurationResult(status="abandoned", error=str(exc))

    async def _select_account(self, progress: JobProgress) -> CatalogAccount:
        provider = await asyncio.to_thread(rate_limit_state.first_available, self.providers)
        primary = self._accounts[0]
        if provider is None or provider == primary.provider:
            return primary
        account = next(item for item in self._accounts if item.provider == provider)
        log_event(
            logger,
            "catalog.account",
            component="curation_service",
            status="failover",
            provider=account.provider,
            job_id=progress.job_id,
        )
        await progress.warn("Primary Spotify account is cooling down; using the backup account")
        return account

    async def _run(self, request: PlaylistJobRequest, progress: JobProgress) -> CurationResult:
        await progress.log(f"Searching for events in {request.city} on {request.search_date}...")
        events = await self._event_source.fetch_events(
            request.search_date, request.latitude, request.longitude
        )
        windowed = filter_events_by_start_hour(
            events, min_hour=request.min_start_hour, max_hour=request.max_start_hour
        )
        unique = dedupe_events(windowed)
        if not unique:
            await progress.log(NO_EVENTS_MESSAGE)
            return CurationResult(status="failed", error=NO_EVENTS_MESSAGE)

        await progress.store_events(unique)
        await progress.log(
            f"Found {len(unique)} artists performing.", processed=0, total=len(unique)
        )

        account = await self._select_account(progress)
        retry = CatalogRetryController(
            self._catalog_config, on_wait=progress.warn, sleep=self._sleep
        )
        playlist_id: str | None = None
        fill = _PlaylistFill()
        try:
            playlist_id = await retry.run(lambda: account.assembler.create(request))
            await self._fill_playlist(
                request,
                unique,
                account=account,
                playlist_id=playlist_id,
                retry=retry,
                progress=progress,
                fill=fill,
            )
        except CatalogCooldownError as exc:
            if playlist_id is not None:
                await self._rollback(account, playlist_id)
            await asyncio.to_thread(
                rate_limit_state.record_cooldown, exc.retry_after_s, account.provider
            )
            message = (
                "Spotify is rate limiting requests; "
                f"try again in about {int(exc.retry_after_s)} seconds."
            )
            await progress.warn(message)
            return CurationResult(status="failed", error=message)
        except BaseException:
            if playlist_id is not None and fill.tracks_added == 0:
                await self._rollback(account, playlist_id)
            raise

        if fill.tracks_added == 0:
            await self._rollback(account, playlist_id)
            await progress.log(NO_ARTISTS_MESSAGE)
            return CurationResult(status="failed", error=NO_ARTISTS_MESSAGE)

        await progress.log(f"Playlist ready with {fill.tracks_added} tracks.")
        return CurationResult(
            status="complete", playlist_id=playlist_id, tracks_added=fill.tracks_added
        )

    async def _fill_playlist(
        self,
        request: PlaylistJobRequest,
        events: Sequence[Event],
        *,
        account: CatalogAccount,
        playlist_id: str,
        retry: CatalogRetryController,
        progress: JobProgress,
        fill: _PlaylistFill,
    ) -> None:
        excluded_terms = expand_excluded_genres(request.excluded_genres)
        used_artist_ids: set[str] = set()

        for index, event in enumerate(events, start=1):
            name = event.artist_name
            entry: str | None
            try:
                resolution = await retry.run(
                    lambda name=name: self._add_artist(
                        account,
                        name,
                        playlist_id=playlist_id,
                        number_of_songs=request.number_of_songs,
                        excluded_terms=excluded_terms,
                        used_artist_ids=used_artist_ids,
                    )
                )
            except (CatalogRateLimitedError, CatalogUnavailableError):
                entry = f"SKIPPED:{name} (Not found after retries)"
            except CatalogRequestError:
                entry = f"SKIPPED:{name} (Not found)"
            else:
                entry = None
                if resolution.accepted and resolution.artist is not None:
                    used_artist_ids.add(resolution.artist.id)
                    fill.tracks_added += len(resolution.track_uris)
                    entry = f"ARTIST:{resolution.artist.name}"
                elif resolution.skip_reason is not None:
                    entry = f"SKIPPED:{name} ({resolution.skip_reason})"

            entries = (entry,) if entry is not None else ()
            await progress.log(*entries, processed=index)

    async def _add_artist(
        self,
        account: CatalogAccount,
        name: str,
        *,
        playlist_id: str,
        number_of_songs: int,
        excluded_terms: Sequence[str],
        used_artist_ids: set[str],
    ) -> ArtistResolution:
        resolution = await account.matcher.resolve(
            name,
            number_of_songs=number_of_songs,
            excluded_terms=excluded_terms,
            used_artist_ids=used_artist_ids,
        )
        if resolution.accepted:
            await account.assembler.append(playlist_id, resolution.track_uris)
        return resolution

    async def _rollback(self, account: CatalogAccount, playlist_id: str) -> None:
        try:
            await account.assembler.rollback(playlist_id)
        except Exception as exc:
            log_event(
                logger,
                "playlist.rollback",
                component="curation_service",
                level=logging.WARNING,
                status="error",
                playlist_id=playlist_id,
                error=str(exc),
            )


__all__ = [
    "CatalogAccount",
    "CurationPipeline",
    "CurationResult",
    "EventSource",
    "JobAbandonedError",
    "JobProgress",
    "NO_ARTISTS_MESSAGE",
    "NO_EVENTS_MESSAGE",
]
