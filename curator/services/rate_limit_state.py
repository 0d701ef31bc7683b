"""Persisted catalog cool-down shared by all worker loops and processes."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from curator.db import session_scope
from curator.logging import get_logger
from curator.logging_events import log_event
from curator.models import RateLimitState
from curator.utils.time import as_utc, now_utc

logger = get_logger(__name__)

SPOTIFY_PROVIDER = "spotify"
SPOTIFY_BACKUP_PROVIDER = "spotify_backup"


def get_cooldown_until(provider: str = SPOTIFY_PROVIDER) -> datetime | None:
    """Return the cool-down deadline if it is still in the future."""

    with session_scope() as session:
        record = session.get(RateLimitState, provider)
        if record is None:
            return None
        expires_at = as_utc(record.rate_limit_expires_at)
    if expires_at <= now_utc():
        return None
    return expires_at


def is_cooling_down(provider: str = SPOTIFY_PROVIDER) -> bool:
    return get_cooldown_until(provider) is not None


def first_available(providers: Sequence[str]) -> str | None:
    """Return the first account in ``providers`` that is not cooling down."""

    for provider in providers:
        if not is_cooling_down(provider):
            return provider
    return None


def record_cooldown(retry_after_s: float, provider: str = SPOTIFY_PROVIDER) -> datetime:
    """Store ``now + retry_after_s``, never shortening an existing deadline."""

    deadline = now_utc() + timedelta(seconds=max(0.0, float(retry_after_s)))
    with session_scope() as session:
        record = session.get(RateLimitState, provider)
        if record is None:
            session.add(RateLimitState(provider=provider, rate_limit_expires_at=deadline))
        elif as_utc(record.rate_limit_expires_at) < deadline:
            record.rate_limit_expires_at = deadline
        else:
            deadline = as_utc(record.rate_limit_expires_at)
    log_event(
        logger,
        "catalog.cooldown",
        component="rate_limit_state",
        provider=provider,
        status="recorded",
        retry_after_s=float(retry_after_s),
        expires_at=deadline.isoformat(),
    )
    return deadline


__all__ = [
    "SPOTIFY_BACKUP_PROVIDER",
    "SPOTIFY_PROVIDER",
    "first_available",
    "get_cooldown_until",
    "is_cooling_down",
    "record_cooldown",
]
