import asyncio
import inspect
import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from curator.config import override_runtime_env
from curator.db import reset_engine_for_tests
from curator.dependencies import get_app_config

_MANAGED_ENV = (
    "APP_ENV",
    "DATABASE_URL",
    "WORKERS_ENABLED",
    "SPOTIFY_CLIENT_ID",
    "SPOTIFY_CLIENT_SECRET",
    "SPOTIFY_REFRESH_TOKEN",
    "SPOTIFY_BACKUP_CLIENT_ID",
    "SPOTIFY_BACKUP_CLIENT_SECRET",
    "SPOTIFY_BACKUP_REFRESH_TOKEN",
)


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    marker = pyfuncitem.get_closest_marker("asyncio")
    if marker is None:
        return None
    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None
    fixtureinfo = getattr(pyfuncitem, "_fixtureinfo", None)
    if fixtureinfo is None:
        return None
    kwargs = {name: pyfuncitem.funcargs[name] for name in fixtureinfo.argnames}
    asyncio.run(test_func(**kwargs))
    return True


@pytest.fixture(autouse=True)
def _test_environment(tmp_path: Path) -> Iterator[None]:
    previous = {key: os.environ.get(key) for key in _MANAGED_ENV}
    db_path = tmp_path / "data" / "curator.db"

    os.environ["APP_ENV"] = "test"
    os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{db_path}"
    os.environ["WORKERS_ENABLED"] = "false"
    for key in _MANAGED_ENV:
        if key.startswith("SPOTIFY_"):
            os.environ.pop(key, None)

    override_runtime_env(None)
    get_app_config.cache_clear()
    reset_engine_for_tests()
    try:
        yield
    finally:
        reset_engine_for_tests()
        get_app_config.cache_clear()
        override_runtime_env(None)
        for key, value in previous.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
