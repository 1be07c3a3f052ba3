"""
Scheduler Service

Periodic jobs of the automation core:
- schedule_all_channels: top up every enabled channel (at startup, then hourly)
- watchdog: fail jobs stuck in an active stage
- cleanup: remove old rendered artifacts (daily at 02:00 UTC)

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from viral_machine.settings import get_settings

logger = logging.getLogger("scheduler")

# Advisory lock keys (arbitrary int64, unique per job type)
LOCK_SCHEDULE_CHANNELS = 910_001
LOCK_WATCHDOG = 910_002
LOCK_CLEANUP = 910_003


class SchedulerService:
    """Runs the periodic jobs.

    Uses Postgres pg_try_advisory_lock on each tick so that only
    one instance (the leader) executes the job while other
    instances skip silently.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._session_factory: async_sessionmaker | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    def _get_session(self) -> AsyncSession:
        if not self._session_factory:
            from viral_machine.db import AsyncSessionLocal

            self.configure(AsyncSessionLocal)
        return self._session_factory()

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Try to acquire a Postgres session-level advisory lock (non-blocking).

        Non-Postgres databases (local sqlite) have a single instance, which is always leader.
        """
        if session.bind.dialect.name != "postgresql":
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if session.bind.dialect.name != "postgresql":
            return
        await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return

        if self._running:
            return

        self.scheduler.add_job(
            self._run_schedule_channels,
            IntervalTrigger(minutes=settings.schedule_interval_minutes),
            id="schedule_channels",
            name="Schedule daily videos for all channels",
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )

        self.scheduler.add_job(
            self._run_watchdog,
            IntervalTrigger(minutes=settings.watchdog_interval_minutes),
            id="watchdog",
            name="Fail stuck jobs",
            replace_existing=True,
        )

        self.scheduler.add_job(
            self._run_cleanup,
            CronTrigger(hour=2, minute=0, timezone="UTC"),
            id="cleanup",
            name="Clean up old artifacts",
            replace_existing=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (single-leader mode via advisory locks)")

    def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    async def _run_schedule_channels(self):
        """Reconcile every enabled channel against its daily target."""
        async with self._get_session() as session:
            if not await self._try_advisory_lock(session, LOCK_SCHEDULE_CHANNELS):
                logger.debug("[schedule_channels] Advisory lock not acquired, another instance is leader, skipping tick")
                return None

            try:
                logger.info("[schedule_channels] LEADER, running daily scheduling")
                from viral_machine.services.daily_scheduler import ChannelScheduler
                from viral_machine.services.video_queue import get_video_queue

                result = await ChannelScheduler(session, get_video_queue()).schedule_all_channels()
                logger.info(
                    "[schedule_channels] Completed: %d channels, %d jobs scheduled",
                    result.get("channels_processed", 0),
                    result.get("jobs_scheduled", 0),
                )
                return result
            finally:
                await self._release_advisory_lock(session, LOCK_SCHEDULE_CHANNELS)

    async def _run_watchdog(self):
        async with self._get_session() as session:
            if not await self._try_advisory_lock(session, LOCK_WATCHDOG):
                logger.debug("[watchdog] Advisory lock not acquired, skipping tick")
                return None

            try:
                from viral_machine.services.video_queue import get_video_queue
                from viral_machine.services.watchdog_service import run_watchdog

                return await run_watchdog(get_video_queue())
            finally:
                await self._release_advisory_lock(session, LOCK_WATCHDOG)

    async def _run_cleanup(self):
        async with self._get_session() as session:
            if not await self._try_advisory_lock(session, LOCK_CLEANUP):
                logger.debug("[cleanup] Advisory lock not acquired, skipping tick")
                return None

            try:
                logger.info("[cleanup] LEADER, removing old artifacts")
                from viral_machine.services.storage import cleanup

                return await asyncio.to_thread(cleanup)
            finally:
                await self._release_advisory_lock(session, LOCK_CLEANUP)

    def get_jobs(self) -> list[dict]:
        """Get list of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs

    async def run_now(self, job_id: str) -> dict[str, Any]:
        """Run a job immediately."""
        job = self.scheduler.get_job(job_id)
        if not job:
            return {"error": f"Job {job_id} not found", "not_found": True}

        try:
            result = await job.func()
            return {"ok": True, "result": result}
        except Exception as e:
            logger.error("Failed to run job %s: %s", job_id, e)
            return {"ok": False, "error": str(e)}


# Global instance
scheduler_service = SchedulerService.get_instance()
