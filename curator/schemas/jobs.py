"""Pydantic schemas for the curation job API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlaylistJobCreate(_CamelModel):
    city: str = Field(..., min_length=1, max_length=255, description="Display name of the city")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    search_date: date = Field(..., alias="date", description="Concert date (YYYY-MM-DD)")
    number_of_songs: int | None = Field(
        default=None, ge=1, le=10, description="Top tracks to add per artist"
    )
    excluded_genres: list[str] = Field(default_factory=list)
    min_start_time: int = Field(0, ge=0, le=23, description="Earliest start hour (inclusive)")
    max_start_time: int = Field(24, ge=1, le=24, description="Latest start hour (exclusive)")
    owner_id: str | None = Field(default=None, max_length=64)

    @field_validator("city")
    @classmethod
    def _validate_city(cls, value: str) -> str:
        candidate = (value or "").strip()
        if not candidate:
            raise ValueError("city must not be empty")
        return candidate

    @field_validator("excluded_genres", mode="before")
    @classmethod
    def _split_genres(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part for part in value.split(",") if part.strip()]
        return value

    @model_validator(mode="after")
    def _validate_window(self) -> "PlaylistJobCreate":
        if self.min_start_time >= self.max_start_time:
            raise ValueError("minStartTime must be earlier than maxStartTime")
        return self


class PlaylistJobAccepted(_CamelModel):
    job_id: int
    status: str
    reused: bool = False


class JobProgress(_CamelModel):
    processed: int = 0
    total: int = 0


class PlaylistJobStatusResponse(_CamelModel):
    job_id: int
    status: str
    city: str
    search_date: str = Field(..., alias="date")
    playlist_id: str | None = None
    error: str | None = None
    logs: list[str] = Field(default_factory=list)
    progress: JobProgress
    events: list[dict[str, Any]] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class HealthResponse(BaseModel):
    status: str
    workers: dict[str, Any]


__all__ = [
    "HealthResponse",
    "JobProgress",
    "PlaylistJobAccepted",
    "PlaylistJobCreate",
    "PlaylistJobStatusResponse",
]
