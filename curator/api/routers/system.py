"""Service health endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from curator.dependencies import get_worker_pool
from curator.schemas.jobs import HealthResponse
from curator.workers.curation_worker import CurationWorkerPool

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
def health(pool: CurationWorkerPool | None = Depends(get_worker_pool)) -> HealthResponse:
    workers = pool.status() if pool is not None else {"running": 0, "busy": 0, "size": 0}
    return HealthResponse(status="ok", workers=workers)
