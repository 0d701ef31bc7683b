"""Playlist curation job endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from curator.config import AppConfig
from curator.core.errors import InvalidInputError
from curator.core.types import PlaylistJobRequest
from curator.dependencies import get_app_config
from curator.errors import NotFoundError, ValidationAppError
from curator.logging import get_logger
from curator.schemas.jobs import (
    JobProgress,
    PlaylistJobAccepted,
    PlaylistJobCreate,
    PlaylistJobStatusResponse,
)
from curator.workers import persistence

router = APIRouter(prefix="/jobs", tags=["Jobs"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=PlaylistJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def submit_playlist_job(
    payload: PlaylistJobCreate,
    config: AppConfig = Depends(get_app_config),
) -> PlaylistJobAccepted:
    """Queue a curation job, or hand back an equivalent one already known."""

    try:
        request = PlaylistJobRequest(
            city=payload.city,
            latitude=payload.latitude,
            longitude=payload.longitude,
            search_date=payload.search_date.isoformat(),
            number_of_songs=payload.number_of_songs
            or config.catalog.default_tracks_per_artist,
            excluded_genres=tuple(payload.excluded_genres),
            min_start_hour=payload.min_start_time,
            max_start_hour=payload.max_start_time,
            owner_id=payload.owner_id,
        )
    except InvalidInputError as exc:
        raise ValidationAppError(str(exc)) from exc

    job, reused = persistence.submit_job(
        request, stale_after_minutes=config.workers.stale_after_minutes
    )
    logger.info(
        "Job %s for %s on %s %s",
        job.id,
        request.city,
        request.search_date,
        "reused" if reused else "queued",
    )
    return PlaylistJobAccepted(job_id=job.id, status=job.status.value, reused=reused)


@router.get("/{job_id}", response_model=PlaylistJobStatusResponse)
def get_playlist_job(job_id: int) -> PlaylistJobStatusResponse:
    """Return status, log and progress of a job for polling clients."""

    job = persistence.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found.")
    return PlaylistJobStatusResponse(
        job_id=job.id,
        status=job.status.value,
        city=job.search_city,
        search_date=job.search_date,
        playlist_id=job.playlist_id,
        error=job.error_message,
        logs=job.log_history,
        progress=JobProgress(processed=job.processed_artists, total=job.total_artists),
        events=job.events_data,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )
