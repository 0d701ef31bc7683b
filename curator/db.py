"""Database configuration and helper utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from curator.config import load_config


class Base(DeclarativeBase):
    pass


metadata = Base.metadata


_engine: Engine | None = None
SessionLocal: sessionmaker[Session] | None = None
_initializing_db = False

_logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_S = 30


def _synchronous_url(url: URL) -> URL:
    driver = url.drivername.lower()
    if driver in {"sqlite", "sqlite+aiosqlite"}:
        return url.set(drivername="sqlite+pysqlite")
    if driver in {"postgresql", "postgresql+asyncpg", "postgres"}:
        return url.set(drivername="postgresql+psycopg")
    return url


def _is_memory_database(url: URL) -> bool:
    return not url.database or url.database == ":memory:"


def _database_file_path(url: URL) -> Path | None:
    if not url.drivername.startswith("sqlite") or _is_memory_database(url):
        return None
    path = Path(url.database)
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    return path


def _install_sqlite_write_locking(engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers ``BEGIN`` until the first write, so two claimers could both
    read the same pending row. ``BEGIN IMMEDIATE`` serialises them instead,
    which is the closest SQLite gets to ``SELECT ... FOR UPDATE SKIP LOCKED``.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def _build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    sync_url = _synchronous_url(url)
    if not sync_url.drivername.startswith("sqlite"):
        return create_engine(sync_url, pool_pre_ping=True)

    options: dict[str, Any] = {
        "connect_args": {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_S},
    }
    if _is_memory_database(sync_url):
        options["poolclass"] = StaticPool
    engine = create_engine(sync_url, **options)
    _install_sqlite_write_locking(engine)
    return engine


def _dispose_engine() -> None:
    global _engine, SessionLocal

    if _engine is not None:
        _engine.dispose()

    _engine = None
    SessionLocal = None


def _ensure_engine(*, auto_init: bool = True) -> None:
    global _engine, SessionLocal

    config = load_config()
    database_url = config.database.url
    target_url = _synchronous_url(make_url(database_url)).render_as_string(hide_password=False)

    if _engine is not None and _engine.url.render_as_string(hide_password=False) == target_url:
        return

    _dispose_engine()

    _engine = _build_engine(database_url)
    SessionLocal = sessionmaker(
        bind=_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )

    if auto_init and not _initializing_db:
        init_db()


def get_engine() -> Engine:
    _ensure_engine()
    if _engine is None:
        raise RuntimeError("Database engine is not initialized.")
    return _engine


def get_session() -> Session:
    if SessionLocal is None:
        _ensure_engine()
    if SessionLocal is None:
        raise RuntimeError("Database session factory is not initialized.")
    return SessionLocal()


@contextmanager
def session_scope() -> Iterator[Session]:
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    global _initializing_db

    if _initializing_db:
        return

    _initializing_db = True
    try:
        config = load_config()
        path = _database_file_path(make_url(config.database.url))
        created = False
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            created = not path.exists()

        _ensure_engine(auto_init=False)
        if _engine is None:
            raise RuntimeError("Database engine was not initialised before bootstrap.")

        from curator import models  # noqa: F401

        Base.metadata.create_all(bind=_engine, checkfirst=True)

        if created:
            _logger.info("Database bootstrap completed", extra={"event": "database.bootstrap"})
    finally:
        _initializing_db = False


def reset_engine_for_tests() -> None:
    """Reset the cached engine/session so tests get a clean database handle."""

    global _initializing_db

    _dispose_engine()
    _initializing_db = False


__all__ = [
    "Base",
    "metadata",
    "SessionLocal",
    "get_engine",
    "get_session",
    "session_scope",
    "init_db",
    "reset_engine_for_tests",
]
