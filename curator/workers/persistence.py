"""Persistence helpers for the ``playlist_jobs`` work queue.

Every function opens its own short transaction through :func:`session_scope`.
Writes made on behalf of a running job are guarded by ``status = 'building'``
so that a job the reaper already failed is never resurrected by a slow worker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from curator.config import DEFAULT_JOB_BUILD_TIMEOUT_MIN, DEFAULT_JOB_STALE_AFTER_MIN
from curator.core.types import PlaylistJobRequest, normalize_genres
from curator.db import session_scope
from curator.logging import get_logger
from curator.logging_events import log_event
from curator.models import ACTIVE_JOB_STATUSES, PlaylistJob, PlaylistJobStatus
from curator.utils.time import as_utc, now_utc

logger = get_logger(__name__)

STALE_JOB_MESSAGE = "Job stalled while building and was replaced by a new request."
ZOMBIE_JOB_MESSAGE = "Job timed out while building."
ORPHANED_JOB_MESSAGE = "Server restarted while the job was building."


@dataclass(slots=True)
class PlaylistJobDTO:
    """Lightweight data transfer object for playlist jobs."""

    id: int
    status: PlaylistJobStatus
    search_city: str
    latitude: float
    longitude: float
    search_date: str
    number_of_songs: int
    excluded_genres: list[str]
    min_start_hour: int
    max_start_hour: int
    owner_id: str | None = None
    log_history: list[str] = field(default_factory=list)
    total_artists: int = 0
    processed_artists: int = 0
    events_data: list[dict[str, Any]] | None = None
    playlist_id: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_request(self) -> PlaylistJobRequest:
        return PlaylistJobRequest(
            city=self.search_city,
            latitude=self.latitude,
            longitude=self.longitude,
            search_date=self.search_date,
            number_of_songs=self.number_of_songs,
            excluded_genres=tuple(self.excluded_genres),
            min_start_hour=self.min_start_hour,
            max_start_hour=self.max_start_hour,
            owner_id=self.owner_id,
        )


def _to_dto(record: PlaylistJob) -> PlaylistJobDTO:
    return PlaylistJobDTO(
        id=int(record.id),
        status=PlaylistJobStatus(record.status),
        search_city=str(record.search_city),
        latitude=float(record.latitude),
        longitude=float(record.longitude),
        search_date=str(record.search_date),
        number_of_songs=int(record.number_of_songs),
        excluded_genres=list(record.excluded_genres or []),
        min_start_hour=int(record.min_start_hour),
        max_start_hour=int(record.max_start_hour),
        owner_id=record.owner_id,
        log_history=list(record.log_history or []),
        total_artists=int(record.total_artists or 0),
        processed_artists=int(record.processed_artists or 0),
        events_data=list(record.events_data) if record.events_data is not None else None,
        playlist_id=record.playlist_id,
        error_message=record.error_message,
        created_at=as_utc(record.created_at) if record.created_at else None,
        updated_at=as_utc(record.updated_at) if record.updated_at else None,
    )


def _emit_job_event(job_id: int, status: str, **extra: Any) -> None:
    payload: dict[str, Any] = {
        "component": "jobs.persistence",
        "entity_id": str(job_id),
        "status": status,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    log_event(logger, "worker.job", **payload)


def _fail_building(session: Session, condition: Any, message: str) -> list[int]:
    ids = list(
        session.execute(
            select(PlaylistJob.id).where(
                PlaylistJob.status == PlaylistJobStatus.BUILDING.value,
                condition,
            )
        ).scalars()
    )
    if not ids:
        return []
    session.execute(
        update(PlaylistJob)
        .where(
            PlaylistJob.id.in_(ids),
            PlaylistJob.status == PlaylistJobStatus.BUILDING.value,
        )
        .values(
            status=PlaylistJobStatus.FAILED.value,
            error_message=message,
            updated_at=now_utc(),
        )
    )
    return ids


def _find_equivalent(
    session: Session,
    request: PlaylistJobRequest,
    *,
    stale_after_minutes: int,
) -> PlaylistJob | None:
    stmt = (
        select(PlaylistJob)
        .where(
            func.lower(PlaylistJob.search_city) == request.city.lower(),
            PlaylistJob.search_date == request.search_date,
            PlaylistJob.number_of_songs == int(request.number_of_songs),
            PlaylistJob.min_start_hour == int(request.min_start_hour),
            PlaylistJob.max_start_hour == int(request.max_start_hour),
            PlaylistJob.status.in_(ACTIVE_JOB_STATUSES),
        )
        .order_by(PlaylistJob.id.desc())
    )
    wanted_genres = normalize_genres(request.excluded_genres)
    stale_cutoff = now_utc() - timedelta(minutes=stale_after_minutes)

    for record in session.execute(stmt).scalars():
        if normalize_genres(record.excluded_genres) != wanted_genres:
            continue
        if (
            record.status == PlaylistJobStatus.BUILDING.value
            and as_utc(record.updated_at) < stale_cutoff
        ):
            stale_ids = _fail_building(
                session, PlaylistJob.id == record.id, STALE_JOB_MESSAGE
            )
            if stale_ids:
                _emit_job_event(record.id, "stale")
            continue
        return record
    return None


def find_equivalent_job(
    request: PlaylistJobRequest,
    *,
    stale_after_minutes: int = DEFAULT_JOB_STALE_AFTER_MIN,
) -> PlaylistJobDTO | None:
    """Return a reusable job with the same parameters, if one exists.

    Pending, building and complete jobs qualify. A building job that has not
    made progress for ``stale_after_minutes`` is marked failed and skipped.
    """

    with session_scope() as session:
        record = _find_equivalent(session, request, stale_after_minutes=stale_after_minutes)
        return _to_dto(record) if record is not None else None


def submit_job(
    request: PlaylistJobRequest,
    *,
    stale_after_minutes: int = DEFAULT_JOB_STALE_AFTER_MIN,
) -> tuple[PlaylistJobDTO, bool]:
    """Reuse an equivalent job or enqueue a new pending one.

    Returns the job and whether it was reused.
    """

    with session_scope() as session:
        existing = _find_equivalent(session, request, stale_after_minutes=stale_after_minutes)
        if existing is not None:
            dto = _to_dto(existing)
            reused = True
        else:
            record = PlaylistJob(
                status=PlaylistJobStatus.PENDING.value,
                search_city=request.city,
                latitude=float(request.latitude),
                longitude=float(request.longitude),
                search_date=request.search_date,
                number_of_songs=int(request.number_of_songs),
                excluded_genres=normalize_genres(request.excluded_genres),
                min_start_hour=int(request.min_start_hour),
                max_start_hour=int(request.max_start_hour),
                owner_id=request.owner_id,
                log_history=[],
            )
            session.add(record)
            session.flush()
            session.refresh(record)
            dto = _to_dto(record)
            reused = False
    _emit_job_event(dto.id, dto.status.value, deduped=reused)
    return dto, reused


def try_claim_next_pending_job() -> PlaylistJobDTO | None:
    """Atomically move the oldest pending job to ``building`` and return it.

    Returns ``None`` when nothing is claimable, including when every pending
    row is locked by a concurrent claimer.
    """

    with session_scope() as session:
        stmt = (
            select(PlaylistJob)
            .where(PlaylistJob.status == PlaylistJobStatus.PENDING.value)
            .order_by(PlaylistJob.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        record = session.execute(stmt).scalars().first()
        if record is None:
            return None

        result = session.execute(
            update(PlaylistJob)
            .where(
                PlaylistJob.id == record.id,
                PlaylistJob.status == PlaylistJobStatus.PENDING.value,
            )
            .values(status=PlaylistJobStatus.BUILDING.value, updated_at=now_utc())
        )
        if not result.rowcount:
            return None

        session.refresh(record)
        dto = _to_dto(record)
    _emit_job_event(dto.id, "claimed")
    return dto


def reap_zombies(*, timeout_minutes: int = DEFAULT_JOB_BUILD_TIMEOUT_MIN) -> int:
    """Fail jobs stuck in ``building`` for longer than ``timeout_minutes``."""

    cutoff = now_utc() - timedelta(minutes=timeout_minutes)
    with session_scope() as session:
        ids = _fail_building(session, PlaylistJob.updated_at < cutoff, ZOMBIE_JOB_MESSAGE)
    for job_id in ids:
        _emit_job_event(job_id, "reaped", timeout_minutes=timeout_minutes)
    return len(ids)


def fail_orphaned_jobs(*, idle_seconds: float = 0.0) -> int:
    """Fail ``building`` jobs untouched for ``idle_seconds``; run once at startup.

    Workers in other processes sharing the store refresh ``updated_at`` with
    every progress write, so their jobs stay inside the window and survive.
    """

    cutoff = now_utc() - timedelta(seconds=max(0.0, float(idle_seconds)))
    with session_scope() as session:
        ids = _fail_building(session, PlaylistJob.updated_at < cutoff, ORPHANED_JOB_MESSAGE)
    for job_id in ids:
        _emit_job_event(job_id, "orphaned")
    return len(ids)


def _guarded_update(job_id: int, **values: Any) -> bool:
    with session_scope() as session:
        result = session.execute(
            update(PlaylistJob)
            .where(
                PlaylistJob.id == job_id,
                PlaylistJob.status == PlaylistJobStatus.BUILDING.value,
            )
            .values(updated_at=now_utc(), **values)
        )
        return bool(result.rowcount)


def append_job_log(job_id: int, entries: Iterable[str], **progress: Any) -> bool:
    """Append log lines (and optionally progress counters) to a building job."""

    lines = [str(entry) for entry in entries]
    with session_scope() as session:
        stmt = (
            select(PlaylistJob)
            .where(
                PlaylistJob.id == job_id,
                PlaylistJob.status == PlaylistJobStatus.BUILDING.value,
            )
            .with_for_update()
        )
        record = session.execute(stmt).scalars().first()
        if record is None:
            return False
        values: dict[str, Any] = {"log_history": list(record.log_history or []) + lines}
        values.update(_progress_values(**progress))
        result = session.execute(
            update(PlaylistJob)
            .where(
                PlaylistJob.id == job_id,
                PlaylistJob.status == PlaylistJobStatus.BUILDING.value,
            )
            .values(updated_at=now_utc(), **values)
        )
        return bool(result.rowcount)


def _progress_values(
    *, processed: int | None = None, total: int | None = None
) -> dict[str, int]:
    values: dict[str, int] = {}
    if processed is not None:
        values["processed_artists"] = max(0, int(processed))
    if total is not None:
        values["total_artists"] = max(0, int(total))
    return values


def record_progress(job_id: int, *, processed: int, total: int | None = None) -> bool:
    return _guarded_update(job_id, **_progress_values(processed=processed, total=total))


def store_events(job_id: int, events: Sequence[Mapping[str, Any]]) -> bool:
    """Persist the filtered, deduplicated events and reset progress counters."""

    return _guarded_update(
        job_id,
        events_data=[dict(event) for event in events],
        total_artists=len(events),
        processed_artists=0,
    )


def complete_job(job_id: int, *, playlist_id: str) -> bool:
    """Mark a building job as complete. ``False`` if it is no longer building."""

    updated = _guarded_update(
        job_id,
        status=PlaylistJobStatus.COMPLETE.value,
        playlist_id=playlist_id,
        error_message=None,
    )
    _emit_job_event(job_id, "complete" if updated else "complete_skipped", playlist_id=playlist_id)
    return updated


def fail_job(job_id: int, *, message: str) -> bool:
    """Mark a building job as failed. ``False`` if it is no longer building."""

    updated = _guarded_update(
        job_id,
        status=PlaylistJobStatus.FAILED.value,
        error_message=message,
    )
    _emit_job_event(job_id, "failed" if updated else "fail_skipped", error=message)
    return updated


def get_job(job_id: int) -> PlaylistJobDTO | None:
    with session_scope() as session:
        record = session.get(PlaylistJob, job_id)
        return _to_dto(record) if record is not None else None


__all__ = [
    "ORPHANED_JOB_MESSAGE",
    "PlaylistJobDTO",
    "STALE_JOB_MESSAGE",
    "ZOMBIE_JOB_MESSAGE",
    "append_job_log",
    "complete_job",
    "fail_job",
    "fail_orphaned_jobs",
    "find_equivalent_job",
    "get_job",
    "reap_zombies",
    "record_progress",
    "store_events",
    "submit_job",
    "try_claim_next_pending_job",
]
