"""FastAPI application for the curator service."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from curator.api.routers import jobs_router, system_router
from curator.config import AppConfig, get_env
from curator.db import init_db
from curator.dependencies import build_worker_pool, get_app_config
from curator.logging import configure_logging, get_logger
from curator.logging_events import log_event
from curator.middleware.errors import setup_exception_handlers
from curator.workers.curation_worker import CurationWorkerPool

logger = get_logger(__name__)

PoolFactory = Callable[[AppConfig], CurationWorkerPool | None]


def create_app(
    config: AppConfig | None = None,
    *,
    pool_factory: PoolFactory = build_worker_pool,
) -> FastAPI:
    """Build the API app; the worker pool starts and stops with its lifespan."""

    resolved = config or get_app_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(resolved.logging.level, resolved.logging.log_file)
        init_db()
        logger.info("Database initialised")

        pool = pool_factory(resolved)
        app.state.worker_pool = pool
        log_event(
            logger,
            "worker.config",
            component="app",
            status="enabled" if pool is not None else "disabled",
            pool_size=resolved.workers.pool_size if pool is not None else 0,
        )
        if pool is not None:
            await pool.start()
        try:
            yield
        finally:
            if pool is not None:
                await pool.stop()
            app.state.worker_pool = None
            logger.info("Curator application stopped")

    app = FastAPI(
        title="Live Music Curator",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config_snapshot = resolved
    app.state.worker_pool = None
    setup_exception_handlers(app)
    app.include_router(jobs_router, prefix=resolved.api_base_path)
    app.include_router(system_router, prefix=resolved.api_base_path)
    return app


app = create_app()

DEFAULT_APP_HOST = "0.0.0.0"
DEFAULT_APP_PORT = 8080


def run() -> None:
    """Serve the API with uvicorn on APP_HOST:APP_PORT."""

    host = get_env("APP_HOST") or DEFAULT_APP_HOST
    try:
        port = int(get_env("APP_PORT") or DEFAULT_APP_PORT)
    except ValueError:
        port = DEFAULT_APP_PORT
    uvicorn.run("curator.main:app", host=host, port=port, proxy_headers=True)
