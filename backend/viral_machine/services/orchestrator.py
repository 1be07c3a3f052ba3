"""
Orchestrator — polls the video queue and runs at most MAX_CONCURRENT_JOBS
jobs at a time inside this process.

Each tick:
- does nothing while workers are disabled
- does nothing while active_jobs >= max_concurrent (no extra polls are queued)
- otherwise claims up to the free slot count (priority desc, then FIFO)
  and dispatches each job as an asyncio task

active_jobs is only touched from the event loop, so no lock is needed.
A job's exception is logged and recorded on the job; the loop never raises.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from viral_machine.errors import UnknownJobType
from viral_machine.services.jobs import CREATE_VIDEO, Job, decode_payload
from viral_machine.services.retry import is_retryable
from viral_machine.services.video_queue import VideoQueue, get_video_queue
from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]


class Orchestrator:
    """Concurrency-capped job runner."""

    def __init__(
        self,
        queue: VideoQueue,
        handlers: dict[str, JobHandler] | None = None,
        *,
        max_concurrent: int | None = None,
        poll_interval_sec: float | None = None,
        workers_enabled: bool | None = None,
    ):
        settings = get_settings()
        self.queue = queue
        self.handlers: dict[str, JobHandler] = dict(handlers or {})
        self.max_concurrent = settings.max_concurrent_jobs if max_concurrent is None else max_concurrent
        self.poll_interval_sec = (
            settings.orchestrator_poll_interval_sec if poll_interval_sec is None else poll_interval_sec
        )
        if self.max_concurrent < 0:
            raise ValueError(f"max_concurrent must be >= 0, got {self.max_concurrent}")
        if self.poll_interval_sec <= 0:
            raise ValueError(f"poll_interval_sec must be > 0, got {self.poll_interval_sec}")
        self.workers_enabled = settings.workers_enabled if workers_enabled is None else workers_enabled
        self.active_jobs = 0
        self._tasks: set[asyncio.Task] = set()
        self._tick_lock = asyncio.Lock()
        self._scheduler: AsyncIOScheduler | None = None

    # ── lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        """Start polling. A second call is a no-op."""
        if self._scheduler is not None:
            logger.warning("[orchestrator] Orchestrator already running")
            return

        logger.info(
            f"[orchestrator] Starting job orchestrator (max_concurrent={self.max_concurrent}, "
            f"poll={self.poll_interval_sec}s)"
        )
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.poll_interval_sec),
            id="orchestrator_poll",
            name="Poll video queue",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.start()

    def stop(self) -> None:
        """Stop polling. In-flight jobs keep running to completion."""
        if self._scheduler is None:
            return
        logger.info(f"[orchestrator] Stopping job orchestrator ({self.active_jobs} jobs still in flight)")
        self._scheduler.shutdown(wait=False)
        self._scheduler = None

    def is_running(self) -> bool:
        return self._scheduler is not None

    def enable_workers(self) -> None:
        self.workers_enabled = True
        logger.info("[orchestrator] Workers enabled")

    def disable_workers(self) -> None:
        self.workers_enabled = False
        logger.info("[orchestrator] Workers disabled")

    async def wait_idle(self) -> None:
        """Wait for every dispatched job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── polling ───────────────────────────────────────────────

    async def tick(self) -> int:
        """One poll. Returns the number of jobs dispatched."""
        if not self.workers_enabled:
            return 0
        if self._tick_lock.locked():
            return 0

        async with self._tick_lock:
            if self.active_jobs >= self.max_concurrent:
                logger.debug(
                    f"[orchestrator] Max concurrent jobs reached ({self.active_jobs}/{self.max_concurrent}), waiting"
                )
                return 0

            available = self.max_concurrent - self.active_jobs
            try:
                jobs = await self.queue.claim(available)
            except Exception as e:
                logger.error(f"[orchestrator] Failed to claim jobs: {e}")
                return 0

            for job in jobs:
                self.active_jobs += 1
                task = asyncio.create_task(self._run(job), name=f"job:{job.id}")
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

            if jobs:
                logger.info(f"[orchestrator] Dispatched {len(jobs)} jobs ({self.active_jobs}/{self.max_concurrent} active)")
            return len(jobs)

    async def _run(self, job: Job) -> None:
        try:
            await self._process_job(job)
        finally:
            self.active_jobs -= 1

    async def _process_job(self, job: Job) -> None:
        logger.info(f"[orchestrator] Processing job {job.id} (type={job.type})")
        handler = self.handlers.get(job.type)

        if handler is None:
            logger.error(f"[orchestrator] Unknown job type {job.type!r} for job {job.id}")
            await self._record_failure(job, UnknownJobType(f"Unknown job type: {job.type!r}"), count_attempt=False)
            return

        try:
            await handler(job)
        except Exception as e:
            stage = await self._current_stage(job)
            logger.error(f"[orchestrator] Job {job.id} failed at stage {stage}: {e}")
            await self._record_failure(job, e, count_attempt=not isinstance(e, UnknownJobType))

    async def _current_stage(self, job: Job) -> str:
        try:
            latest = await self.queue.get_job(job.id)
        except Exception:
            return job.status.value
        return latest.status.value if latest else job.status.value

    async def _record_failure(self, job: Job, error: BaseException, *, count_attempt: bool = True) -> None:
        try:
            await self.queue.fail(job.id, error, retryable=is_retryable(error), count_attempt=count_attempt)
        except Exception as e:
            logger.error(f"[orchestrator] Could not mark job {job.id} as failed: {e}")

    # ── manual jobs ───────────────────────────────────────────

    async def create_job(self, job_type: str, channel_id: str, niche: str, priority: int = 0) -> str:
        """Enqueue an immediate job. Raises UnknownJobType for unsupported types."""
        payload = decode_payload({"type": job_type, "channel_id": channel_id, "niche": niche})
        job_id = str(uuid.uuid4())
        await self.queue.enqueue(CREATE_VIDEO, payload, job_id=job_id, priority=priority)
        logger.info(f"[orchestrator] Job created {job_id} ({job_type}, channel={channel_id}, niche={niche}, priority={priority})")
        return job_id

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running(),
            "workers_enabled": self.workers_enabled,
            "active_jobs": self.active_jobs,
            "max_concurrent": self.max_concurrent,
            "poll_interval_sec": self.poll_interval_sec,
            "job_types": sorted(self.handlers),
        }


_orchestrator: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator wired to the default video pipeline."""
    global _orchestrator
    if _orchestrator is None:
        from viral_machine.services.video_processor import build_default_handlers

        queue = get_video_queue()
        _orchestrator = Orchestrator(queue, build_default_handlers(queue))
    return _orchestrator


def set_orchestrator(orchestrator: Orchestrator | None) -> None:
    global _orchestrator
    _orchestrator = orchestrator
