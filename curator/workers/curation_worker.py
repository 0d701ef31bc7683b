from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from sqlalchemy.exc import SQLAlchemyError

from curator.config import WorkerPoolConfig
from curator.logging import get_logger
from curator.logging_events import log_event
from curator.services import rate_limit_state
from curator.services.curation_service import CurationPipeline, CurationResult
from curator.utils.time import monotonic_ms
from curator.workers import persistence
from curator.workers.persistence import PlaylistJobDTO

logger = get_logger(__name__)

TickStatus = Literal["idle", "cooldown", "store_error", "processed"]


@dataclass(slots=True)
class TickResult:
    """Outcome of a single worker tick."""

    status: TickStatus
    job_id: int | None = None
    job_status: str | None = None
    reaped: int = 0


class CurationWorker:
    """One periodic loop: reap, claim the oldest pending job, run it, record it.

    The loop fires every ``interval`` seconds. When the previous tick of the
    same loop is still running the new one is skipped rather than queued.
    """

    def __init__(
        self,
        *,
        index: int,
        config: WorkerPoolConfig,
        pipeline: CurationPipeline,
        providers: Sequence[str] = (rate_limit_state.SPOTIFY_PROVIDER,),
    ) -> None:
        self.index = index
        self.name = f"curation-{index}"
        self._config = config
        self._pipeline = pipeline
        self._providers = tuple(providers)
        self._interval = max(float(config.interval_s), 0.01)
        self._start_delay = max(0.0, index * float(config.stagger_s))
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[TickResult] | None = None
        self._stop_event = asyncio.Event()
        self.ticks_skipped = 0
        self.last_tick: TickResult | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        self._running = False
        self._stop_event.set()
        task = self._task
        if task is None:
            return
        try:
            await asyncio.wait_for(
                asyncio.shield(task), timeout=self._config.shutdown_grace_ms / 1000.0
            )
        except asyncio.TimeoutError:
            task.cancel()
            if self._tick_task is not None:
                self._tick_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        finally:
            self._task = None

    async def _run(self) -> None:
        log_event(
            logger,
            "worker.start",
            component=f"worker.{self.name}",
            status="running",
            interval_s=self._interval,
            start_delay_s=self._start_delay,
        )
        try:
            if self._start_delay and await self._wait(self._start_delay):
                return
            while self._running and not self._stop_event.is_set():
                if self.busy:
                    self.ticks_skipped += 1
                    log_event(
                        logger,
                        "worker.tick",
                        component=f"worker.{self.name}",
                        status="skipped",
                    )
                else:
                    self._tick_task = asyncio.create_task(
                        self.run_once(), name=f"{self.name}-tick"
                    )
                    self._tick_task.add_done_callback(self._log_tick_failure)
                if await self._wait(self._interval):
                    break
            if self._tick_task is not None and not self._tick_task.done():
                # Let the job in flight reach its terminal write.
                await asyncio.wait({self._tick_task})
        finally:
            self._running = False
            log_event(
                logger,
                "worker.stop",
                component=f"worker.{self.name}",
                status="stopped",
            )

    def _log_tick_failure(self, task: asyncio.Task[TickResult]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Tick of %s failed", self.name, exc_info=error)

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; ``True`` if stop was requested meanwhile."""

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_once(self) -> TickResult:
        """Execute a single tick (primarily for tests)."""

        start = monotonic_ms()
        result = await self._tick()
        self.last_tick = result
        log_event(
            logger,
            "worker.tick",
            component=f"worker.{self.name}",
            status=result.status,
            job_id=result.job_id,
            job_status=result.job_status,
            reaped=result.reaped,
            duration_ms=monotonic_ms() - start,
        )
        return result

    async def _tick(self) -> TickResult:
        try:
            available = await asyncio.to_thread(
                rate_limit_state.first_available, self._providers
            )
            if available is None:
                return TickResult(status="cooldown")
            reaped = await asyncio.to_thread(
                persistence.reap_zombies,
                timeout_minutes=self._config.build_timeout_minutes,
            )
            job = await asyncio.to_thread(persistence.try_claim_next_pending_job)
        except SQLAlchemyError:
            logger.exception("Job store unavailable; abandoning tick of %s", self.name)
            return TickResult(status="store_error")

        if job is None:
            return TickResult(status="idle", reaped=reaped)

        outcome = await self._process(job)
        return TickResult(
            status="processed",
            job_id=job.id,
            job_status=outcome.status,
            reaped=reaped,
        )

    async def _process(self, job: PlaylistJobDTO) -> CurationResult:
        try:
            outcome = await self._pipeline.run(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Curation of job %s crashed", job.id)
            outcome = CurationResult(status="failed", error=str(exc) or type(exc).__name__)

        try:
            if outcome.status == "complete" and outcome.playlist_id is not None:
                await asyncio.to_thread(
                    persistence.complete_job, job.id, playlist_id=outcome.playlist_id
                )
            elif outcome.status == "failed":
                await asyncio.to_thread(
                    persistence.fail_job,
                    job.id,
                    message=outcome.error or "Curation failed.",
                )
        except SQLAlchemyError:
            # The reaper will fail the row once it times out.
            logger.exception("Could not record outcome of job %s", job.id)
        return outcome


class CurationWorkerPool:
    """N independent :class:`CurationWorker` loops sharing one pipeline."""

    def __init__(
        self,
        *,
        config: WorkerPoolConfig,
        pipeline: CurationPipeline,
        providers: Sequence[str] = (rate_limit_state.SPOTIFY_PROVIDER,),
    ) -> None:
        self._config = config
        self.workers = [
            CurationWorker(index=index, config=config, pipeline=pipeline, providers=providers)
            for index in range(config.pool_size)
        ]
        self._started = False
        log_event(
            logger,
            "worker.config",
            component="worker.pool",
            status="ok",
            pool_size=config.pool_size,
            interval_s=config.interval_s,
            stagger_s=config.stagger_s,
        )

    async def start(self) -> None:
        if self._started:
            return
        try:
            orphaned = await asyncio.to_thread(
                persistence.fail_orphaned_jobs, idle_seconds=self._config.orphan_idle_s
            )
        except SQLAlchemyError:
            logger.exception("Could not sweep orphaned jobs at startup")
        else:
            if orphaned:
                logger.warning("Failed %d jobs orphaned by a previous run", orphaned)
        for worker in self.workers:
            await worker.start()
        self._started = True

    async def stop(self) -> None:
        await asyncio.gather(*(worker.stop() for worker in self.workers))
        self._started = False

    def status(self) -> dict[str, Any]:
        return {
            "running": sum(1 for worker in self.workers if worker.running),
            "busy": sum(1 for worker in self.workers if worker.busy),
            "size": len(self.workers),
        }


__all__ = ["CurationWorker", "CurationWorkerPool", "TickResult"]
