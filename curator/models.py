"""Database models for the curator job store."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
)

from curator.db import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp for ORM defaults."""

    return datetime.now(UTC)


class PlaylistJobStatus(str, Enum):
    """Lifecycle states of a playlist curation job.

    Transitions only move forward: pending -> building -> complete | failed.
    """

    PENDING = "pending"
    BUILDING = "building"
    COMPLETE = "complete"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (
    PlaylistJobStatus.PENDING.value,
    PlaylistJobStatus.BUILDING.value,
    PlaylistJobStatus.COMPLETE.value,
)


class PlaylistJob(Base):
    __tablename__ = "playlist_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','building','complete','failed')",
            name="ck_playlist_jobs_status_valid",
        ),
        CheckConstraint("number_of_songs > 0", name="ck_playlist_jobs_songs_positive"),
        CheckConstraint(
            "min_start_hour >= 0 AND max_start_hour <= 24 AND min_start_hour < max_start_hour",
            name="ck_playlist_jobs_hour_window",
        ),
        Index("ix_playlist_jobs_status_id", "status", "id"),
        Index("ix_playlist_jobs_lookup", "search_city", "search_date", "number_of_songs"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(
        String(16),
        nullable=False,
        default=PlaylistJobStatus.PENDING.value,
        index=True,
    )
    search_city = Column(String(255), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    search_date = Column(String(10), nullable=False)
    number_of_songs = Column(Integer, nullable=False, default=2)
    excluded_genres = Column(JSON, nullable=False, default=list)
    min_start_hour = Column(Integer, nullable=False, default=0)
    max_start_hour = Column(Integer, nullable=False, default=24)
    owner_id = Column(String(64), nullable=True)
    log_history = Column(JSON, nullable=False, default=list)
    total_artists = Column(Integer, nullable=False, default=0)
    processed_artists = Column(Integer, nullable=False, default=0)
    events_data = Column(JSON, nullable=True)
    playlist_id = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class RateLimitState(Base):
    """Catalog cool-down deadline per Spotify account, shared by every worker process."""

    __tablename__ = "rate_limit_state"

    provider = Column(String(32), primary_key=True)
    rate_limit_expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


__all__ = [
    "ACTIVE_JOB_STATUSES",
    "PlaylistJob",
    "PlaylistJobStatus",
    "RateLimitState",
]
