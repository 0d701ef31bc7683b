from __future__ import annotations

from curator.config import (
    DEFAULT_DB_URL_TEST,
    DEFAULT_JOB_BUILD_TIMEOUT_MIN,
    get_env,
    load_config,
    override_runtime_env,
)


def test_defaults_for_test_profile() -> None:
    config = load_config({"APP_ENV": "test"})

    assert config.environment == "test"
    assert config.database.url == DEFAULT_DB_URL_TEST
    assert config.api_base_path == "/api/v1"
    assert config.workers.enabled is True
    assert config.workers.build_timeout_minutes == DEFAULT_JOB_BUILD_TIMEOUT_MIN
    assert config.catalog.max_attempts == 3
    assert config.catalog.default_retry_after_s == 5.0
    assert config.catalog.server_error_delay_s == 3.0
    assert config.scraper.proxy is None
    assert not config.spotify.is_configured


def test_environment_overrides() -> None:
    config = load_config(
        {
            "APP_ENV": "production",
            "DATABASE_URL": "postgresql+psycopg://db/curator",
            "WORKERS_ENABLED": "false",
            "WORKER_POOL_SIZE": "500",
            "API_BASE_PATH": "curator/",
            "PROXY_URL": "http://proxy.test",
            "PROXY_PORT": "8000",
            "PROXY_USER": "user",
            "PROXY_PASS": "pw",
            "SPOTIFY_CLIENT_ID": "id",
            "SPOTIFY_CLIENT_SECRET": "secret",
            "SPOTIFY_REFRESH_TOKEN": "refresh",
            "SPOTIFY_MARKET": "de",
        }
    )

    assert config.environment == "prod"
    assert config.database.url == "postgresql+psycopg://db/curator"
    assert config.workers.enabled is False
    assert config.workers.pool_size == 32
    assert config.api_base_path == "/curator"
    assert config.scraper.proxy is not None and config.scraper.proxy.port == "8000"
    assert config.spotify.is_configured
    assert config.spotify.market == "DE"


def test_invalid_numbers_fall_back_to_defaults() -> None:
    config = load_config({"APP_ENV": "test", "CATALOG_MAX_ATTEMPTS": "lots"})

    assert config.catalog.max_attempts == 3


def test_get_env_reads_runtime_overrides() -> None:
    override_runtime_env({"LOG_LEVEL": "debug"})

    assert get_env("LOG_LEVEL") == "debug"
    assert get_env("MISSING", "fallback") == "fallback"


def test_backup_account_inherits_primary_settings() -> None:
    config = load_config(
        {
            "APP_ENV": "test",
            "SPOTIFY_CLIENT_ID": "id",
            "SPOTIFY_CLIENT_SECRET": "secret",
            "SPOTIFY_REFRESH_TOKEN": "refresh",
            "SPOTIFY_MARKET": "gb",
            "SPOTIFY_BACKUP_CLIENT_ID": "backup-id",
            "SPOTIFY_BACKUP_CLIENT_SECRET": "backup-secret",
            "SPOTIFY_BACKUP_REFRESH_TOKEN": "backup-refresh",
        }
    )

    assert config.spotify_backup is not None
    assert config.spotify_backup.client_id == "backup-id"
    assert config.spotify_backup.market == "GB"
    assert config.spotify.client_id == "id"


def test_backup_account_requires_full_credentials() -> None:
    config = load_config({"APP_ENV": "test", "SPOTIFY_BACKUP_CLIENT_ID": "backup-id"})

    assert config.spotify_backup is None


def test_orphan_idle_window_spans_interval_and_grace() -> None:
    config = load_config(
        {"APP_ENV": "test", "WORKER_INTERVAL_S": "10", "WORKER_ORPHAN_GRACE_S": "60"}
    )

    assert config.workers.orphan_idle_s == 70.0
