"""Application configuration utilities for the curator service."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
import os
from pathlib import Path
from typing import Any

from curator.logging import get_logger

logger = get_logger(__name__)

_RUNTIME_ENV_CACHE: dict[str, str] | None = None

DEFAULT_DB_URL_DEV = "sqlite+pysqlite:///./curator.db"
DEFAULT_DB_URL_TEST = "sqlite+pysqlite:///:memory:"
DEFAULT_API_BASE_PATH = "/api/v1"
DEFAULT_SPOTIFY_SCOPE = "playlist-modify-public playlist-modify-private"
DEFAULT_SPOTIFY_REDIRECT_URI = "http://127.0.0.1:8888/callback"
DEFAULT_SPOTIFY_MARKET = "US"
DEFAULT_SPOTIFY_TIMEOUT_S = 10.0
DEFAULT_SPOTIFY_RATE_LIMIT_SECONDS = 0.2

DEFAULT_WORKER_POOL_SIZE = 4
DEFAULT_WORKER_INTERVAL_S = 10.0
DEFAULT_WORKER_SHUTDOWN_GRACE_MS = 5_000
DEFAULT_JOB_BUILD_TIMEOUT_MIN = 30
DEFAULT_JOB_STALE_AFTER_MIN = 5
DEFAULT_WORKER_ORPHAN_GRACE_S = 300.0

DEFAULT_BANDSINTOWN_BASE_URL = "https://www.bandsintown.com"
DEFAULT_SCRAPER_PAGE_DELAY_S = 0.5
DEFAULT_SCRAPER_BROWSER_PAGE_DELAY_S = 1.0
DEFAULT_SCRAPER_TIMEOUT_S = 30.0
DEFAULT_SCRAPER_BROWSER_TIMEOUT_MS = 60_000
DEFAULT_SCRAPER_MAX_PAGES = 50

DEFAULT_CATALOG_MAX_ATTEMPTS = 3
DEFAULT_CATALOG_RETRY_AFTER_S = 5.0
DEFAULT_CATALOG_SERVER_ERROR_DELAY_S = 3.0
DEFAULT_CATALOG_FUZZY_MAX_DISTANCE = 1
DEFAULT_CATALOG_SEARCH_LIMIT = 10
DEFAULT_CATALOG_COOLDOWN_THRESHOLD_S = 60.0
DEFAULT_TRACKS_PER_ARTIST = 2


def _load_env_file(path: Path) -> dict[str, str]:
    try:
        contents = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    env_values: dict[str, str] = {}
    for line in contents.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = stripped.partition("=")
        if not sep:
            continue
        env_values[key.strip()] = value.strip().strip('"').strip("'")
    return env_values


def load_runtime_env(
    *,
    env_file: str | os.PathLike[str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Load runtime environment values applying .env before explicit environment."""

    env: dict[str, str] = {}
    source = dict(base_env or os.environ)

    path = Path(env_file) if env_file is not None else Path(".env")
    if path.exists() and path.is_file():
        env.update(_load_env_file(path))

    env.update({key: str(value) for key, value in source.items() if value is not None})
    return env


def get_runtime_env() -> Mapping[str, str]:
    """Return the cached runtime environment mapping."""

    global _RUNTIME_ENV_CACHE
    if _RUNTIME_ENV_CACHE is None:
        _RUNTIME_ENV_CACHE = load_runtime_env()
    return _RUNTIME_ENV_CACHE


def override_runtime_env(runtime_env: Mapping[str, str] | None) -> None:
    """Override the cached runtime environment (primarily for testing)."""

    global _RUNTIME_ENV_CACHE
    if runtime_env is None:
        _RUNTIME_ENV_CACHE = None
    else:
        _RUNTIME_ENV_CACHE = dict(runtime_env)


def get_env(name: str, default: str | None = None) -> str | None:
    """Return an environment variable honoring ENV > .env > defaults."""

    env = get_runtime_env()
    return env.get(name, default)


def _env_value(env: Mapping[str, Any], key: str) -> str | None:
    value = env.get(key)
    if value is None:
        return None
    return str(value)


@dataclass(slots=True)
class SpotifyConfig:
    client_id: str | None
    client_secret: str | None
    refresh_token: str | None
    user_id: str | None
    redirect_uri: str
    scope: str
    market: str
    timeout_s: float
    rate_limit_seconds: float

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)


@dataclass(slots=True)
class LoggingConfig:
    level: str
    log_file: str | None = None


@dataclass(slots=True)
class DatabaseConfig:
    url: str


@dataclass(slots=True)
class WorkerPoolConfig:
    enabled: bool
    pool_size: int
    interval_s: float
    stagger_s: float
    shutdown_grace_ms: int
    build_timeout_minutes: int
    stale_after_minutes: int
    orphan_idle_s: float


@dataclass(slots=True)
class ProxyConfig:
    url: str
    port: str | None
    username: str | None
    password: str | None


@dataclass(slots=True)
class ScraperConfig:
    base_url: str
    page_delay_s: float
    browser_page_delay_s: float
    timeout_s: float
    browser_timeout_ms: int
    max_pages: int
    browser_enabled: bool
    proxy: ProxyConfig | None


@dataclass(slots=True)
class CatalogConfig:
    max_attempts: int
    default_retry_after_s: float
    server_error_delay_s: float
    fuzzy_max_distance: int
    search_limit: int
    cooldown_threshold_s: float
    default_tracks_per_artist: int


@dataclass(slots=True)
class AppConfig:
    spotify: SpotifyConfig
    logging: LoggingConfig
    database: DatabaseConfig
    workers: WorkerPoolConfig
    scraper: ScraperConfig
    catalog: CatalogConfig
    api_base_path: str
    environment: str
    spotify_backup: SpotifyConfig | None = None


def _as_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _coerce_int(value: Any, *, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bounded_int(
    value: Any,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    resolved = _coerce_int(value, default=default)
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _bounded_float(
    value: Any,
    *,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    try:
        resolved = float(value)
    except (TypeError, ValueError):
        resolved = default
    if minimum is not None:
        resolved = max(minimum, resolved)
    if maximum is not None:
        resolved = min(maximum, resolved)
    return resolved


def _resolve_environment_profile(env: Mapping[str, Any]) -> str:
    raw = str(env.get("APP_ENV") or env.get("ENVIRONMENT") or "").strip()
    if not raw and env.get("PYTEST_CURRENT_TEST"):
        raw = "test"
    normalized = raw.lower()
    aliases = {
        "development": "dev",
        "local": "dev",
        "production": "prod",
        "live": "prod",
    }
    normalized = aliases.get(normalized, normalized)
    if normalized not in {"dev", "prod", "test"}:
        if normalized:
            logger.warning("Unknown APP_ENV value %s; defaulting to dev", raw)
        normalized = "dev"
    return normalized


def _resolve_database_url(env: Mapping[str, Any], profile: str) -> str:
    candidate = (_env_value(env, "DATABASE_URL") or "").strip()
    if candidate:
        return candidate
    if profile == "test":
        return DEFAULT_DB_URL_TEST
    return DEFAULT_DB_URL_DEV


def _normalise_base_path(raw: str | None) -> str:
    value = (raw or DEFAULT_API_BASE_PATH).strip()
    if not value or value == "/":
        return ""
    if not value.startswith("/"):
        value = f"/{value}"
    return value.rstrip("/")


def _load_proxy_config(env: Mapping[str, Any]) -> ProxyConfig | None:
    url = (_env_value(env, "PROXY_URL") or "").strip()
    if not url:
        return None
    return ProxyConfig(
        url=url,
        port=(_env_value(env, "PROXY_PORT") or "").strip() or None,
        username=(_env_value(env, "PROXY_USER") or "").strip() or None,
        password=_env_value(env, "PROXY_PASS") or None,
    )


def _load_worker_config(env: Mapping[str, Any]) -> WorkerPoolConfig:
    pool_size = _bounded_int(
        _env_value(env, "WORKER_POOL_SIZE"),
        default=DEFAULT_WORKER_POOL_SIZE,
        minimum=1,
        maximum=32,
    )
    interval_s = _bounded_float(
        _env_value(env, "WORKER_INTERVAL_S"),
        default=DEFAULT_WORKER_INTERVAL_S,
        minimum=0.1,
    )
    # Loops are spread evenly across one interval unless told otherwise.
    stagger_s = _bounded_float(
        _env_value(env, "WORKER_STAGGER_S"),
        default=interval_s / pool_size,
        minimum=0.0,
    )
    return WorkerPoolConfig(
        enabled=_as_bool(_env_value(env, "WORKERS_ENABLED"), default=True),
        pool_size=pool_size,
        interval_s=interval_s,
        stagger_s=stagger_s,
        shutdown_grace_ms=_bounded_int(
            _env_value(env, "WORKER_SHUTDOWN_GRACE_MS"),
            default=DEFAULT_WORKER_SHUTDOWN_GRACE_MS,
            minimum=0,
        ),
        build_timeout_minutes=_bounded_int(
            _env_value(env, "JOB_BUILD_TIMEOUT_MIN"),
            default=DEFAULT_JOB_BUILD_TIMEOUT_MIN,
            minimum=1,
        ),
        stale_after_minutes=_bounded_int(
            _env_value(env, "JOB_STALE_AFTER_MIN"),
            default=DEFAULT_JOB_STALE_AFTER_MIN,
            minimum=1,
        ),
        # Rows a live worker elsewhere is building keep touching updated_at.
        orphan_idle_s=interval_s
        + _bounded_float(
            _env_value(env, "WORKER_ORPHAN_GRACE_S"),
            default=DEFAULT_WORKER_ORPHAN_GRACE_S,
            minimum=0.0,
        ),
    )


def _load_spotify_backup(env: Mapping[str, Any], primary: SpotifyConfig) -> SpotifyConfig | None:
    """Second account used while the primary one is cooling down."""

    backup = replace(
        primary,
        client_id=_env_value(env, "SPOTIFY_BACKUP_CLIENT_ID"),
        client_secret=_env_value(env, "SPOTIFY_BACKUP_CLIENT_SECRET"),
        refresh_token=_env_value(env, "SPOTIFY_BACKUP_REFRESH_TOKEN"),
        user_id=_env_value(env, "SPOTIFY_BACKUP_USER_ID"),
    )
    return backup if backup.is_configured else None


def load_config(runtime_env: Mapping[str, Any] | None = None) -> AppConfig:
    """Build the typed application configuration from the runtime environment."""

    env = runtime_env or get_runtime_env()
    profile = _resolve_environment_profile(env)

    spotify = SpotifyConfig(
        client_id=_env_value(env, "SPOTIFY_CLIENT_ID"),
        client_secret=_env_value(env, "SPOTIFY_CLIENT_SECRET"),
        refresh_token=_env_value(env, "SPOTIFY_REFRESH_TOKEN"),
        user_id=_env_value(env, "SPOTIFY_USER_ID"),
        redirect_uri=_env_value(env, "SPOTIFY_REDIRECT_URI") or DEFAULT_SPOTIFY_REDIRECT_URI,
        scope=_env_value(env, "SPOTIFY_SCOPE") or DEFAULT_SPOTIFY_SCOPE,
        market=(_env_value(env, "SPOTIFY_MARKET") or DEFAULT_SPOTIFY_MARKET).strip().upper(),
        timeout_s=_bounded_float(
            _env_value(env, "SPOTIFY_TIMEOUT_S"),
            default=DEFAULT_SPOTIFY_TIMEOUT_S,
            minimum=1.0,
        ),
        rate_limit_seconds=_bounded_float(
            _env_value(env, "SPOTIFY_RATE_LIMIT_SECONDS"),
            default=DEFAULT_SPOTIFY_RATE_LIMIT_SECONDS,
            minimum=0.0,
        ),
    )

    scraper = ScraperConfig(
        base_url=(_env_value(env, "BANDSINTOWN_BASE_URL") or DEFAULT_BANDSINTOWN_BASE_URL).rstrip(
            "/"
        ),
        page_delay_s=_bounded_float(
            _env_value(env, "SCRAPER_PAGE_DELAY_S"),
            default=DEFAULT_SCRAPER_PAGE_DELAY_S,
            minimum=0.0,
        ),
        browser_page_delay_s=_bounded_float(
            _env_value(env, "SCRAPER_BROWSER_PAGE_DELAY_S"),
            default=DEFAULT_SCRAPER_BROWSER_PAGE_DELAY_S,
            minimum=0.0,
        ),
        timeout_s=_bounded_float(
            _env_value(env, "SCRAPER_TIMEOUT_S"),
            default=DEFAULT_SCRAPER_TIMEOUT_S,
            minimum=1.0,
        ),
        browser_timeout_ms=_bounded_int(
            _env_value(env, "SCRAPER_BROWSER_TIMEOUT_MS"),
            default=DEFAULT_SCRAPER_BROWSER_TIMEOUT_MS,
            minimum=1_000,
        ),
        max_pages=_bounded_int(
            _env_value(env, "SCRAPER_MAX_PAGES"),
            default=DEFAULT_SCRAPER_MAX_PAGES,
            minimum=1,
        ),
        browser_enabled=_as_bool(_env_value(env, "SCRAPER_BROWSER_ENABLED"), default=True),
        proxy=_load_proxy_config(env),
    )

    catalog = CatalogConfig(
        max_attempts=_bounded_int(
            _env_value(env, "CATALOG_MAX_ATTEMPTS"),
            default=DEFAULT_CATALOG_MAX_ATTEMPTS,
            minimum=1,
            maximum=10,
        ),
        default_retry_after_s=_bounded_float(
            _env_value(env, "CATALOG_DEFAULT_RETRY_AFTER_S"),
            default=DEFAULT_CATALOG_RETRY_AFTER_S,
            minimum=0.0,
        ),
        server_error_delay_s=_bounded_float(
            _env_value(env, "CATALOG_SERVER_ERROR_DELAY_S"),
            default=DEFAULT_CATALOG_SERVER_ERROR_DELAY_S,
            minimum=0.0,
        ),
        fuzzy_max_distance=_bounded_int(
            _env_value(env, "CATALOG_FUZZY_MAX_DISTANCE"),
            default=DEFAULT_CATALOG_FUZZY_MAX_DISTANCE,
            minimum=0,
            maximum=5,
        ),
        search_limit=_bounded_int(
            _env_value(env, "CATALOG_SEARCH_LIMIT"),
            default=DEFAULT_CATALOG_SEARCH_LIMIT,
            minimum=1,
            maximum=50,
        ),
        cooldown_threshold_s=_bounded_float(
            _env_value(env, "CATALOG_COOLDOWN_THRESHOLD_S"),
            default=DEFAULT_CATALOG_COOLDOWN_THRESHOLD_S,
            minimum=0.0,
        ),
        default_tracks_per_artist=_bounded_int(
            _env_value(env, "DEFAULT_TRACKS_PER_ARTIST"),
            default=DEFAULT_TRACKS_PER_ARTIST,
            minimum=1,
            maximum=10,
        ),
    )

    return AppConfig(
        spotify=spotify,
        logging=LoggingConfig(
            level=(_env_value(env, "LOG_LEVEL") or "INFO").upper(),
            log_file=_env_value(env, "LOG_FILE") or None,
        ),
        database=DatabaseConfig(url=_resolve_database_url(env, profile)),
        workers=_load_worker_config(env),
        scraper=scraper,
        catalog=catalog,
        api_base_path=_normalise_base_path(_env_value(env, "API_BASE_PATH")),
        environment=profile,
        spotify_backup=_load_spotify_backup(env, spotify),
    )


__all__ = [
    "AppConfig",
    "CatalogConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "ProxyConfig",
    "ScraperConfig",
    "SpotifyConfig",
    "WorkerPoolConfig",
    "get_env",
    "get_runtime_env",
    "load_config",
    "load_runtime_env",
    "override_runtime_env",
]
