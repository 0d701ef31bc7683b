"""FastAPI dependency providers."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from curator.config import AppConfig, load_config
from curator.core.spotify_client import SpotifyClient
from curator.integrations.bandsintown import BandsintownEventSource
from curator.logging import get_logger
from curator.services.curation_service import CurationPipeline
from curator.workers.curation_worker import CurationWorkerPool

logger = get_logger(__name__)


@lru_cache
def get_app_config() -> AppConfig:
    return load_config()


def get_spotify_client(config: AppConfig) -> SpotifyClient | None:
    if not config.spotify.is_configured:
        logger.warning("Spotify credentials missing; curation workers stay idle")
        return None
    return SpotifyClient(config.spotify)


def build_pipeline(config: AppConfig) -> CurationPipeline | None:
    client = get_spotify_client(config)
    if client is None:
        return None
    backup = SpotifyClient(config.spotify_backup) if config.spotify_backup is not None else None
    return CurationPipeline(
        event_source=BandsintownEventSource(config.scraper),
        catalog_client=client,
        backup_client=backup,
        catalog_config=config.catalog,
        market=config.spotify.market,
    )


def build_worker_pool(config: AppConfig) -> CurationWorkerPool | None:
    if not config.workers.enabled:
        return None
    pipeline = build_pipeline(config)
    if pipeline is None:
        return None
    return CurationWorkerPool(
        config=config.workers, pipeline=pipeline, providers=pipeline.providers
    )


def get_worker_pool(request: Request) -> CurationWorkerPool | None:
    return getattr(request.app.state, "worker_pool", None)


__all__ = [
    "build_pipeline",
    "build_worker_pool",
    "get_app_config",
    "get_spotify_client",
    "get_worker_pool",
]
