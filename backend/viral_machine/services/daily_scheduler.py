"""
Daily scheduler — keeps every enabled channel topped up to its daily target.

Reconciliation per channel:
- count the channel's jobs still waiting or delayed in the queue
- if below videos_per_day, generate slots for the deficit and enqueue one
  create-video job per slot, delayed until the slot time
- excess jobs (e.g. after lowering videos_per_day) are left alone

Job ids are "{channel_id}-{scheduled_at_ms}", so re-enqueuing the same slot
is a no-op.
"""
from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from viral_machine.services.channel_store import ChannelStore, channel_niches
from viral_machine.services.jobs import CREATE_VIDEO, ShortVideoPayload, scheduled_job_id
from viral_machine.services.slots import generate_schedule_slots
from viral_machine.services.video_queue import VideoQueue
from viral_machine.settings import Settings, get_settings

logger = logging.getLogger(__name__)

PENDING_QUEUE_STATES = ("waiting", "delayed")


class ChannelScheduler:
    """Tops up the video queue to each channel's daily target."""

    def __init__(
        self,
        session: AsyncSession,
        queue: VideoQueue,
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ):
        self.store = ChannelStore(session)
        self.queue = queue
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()

    async def schedule_channel_videos(self, channel_id: str) -> dict[str, Any]:
        """Enqueue the missing jobs for one channel.

        Returns a report dict: scheduled, existing, target, skipped (reason or None).
        """
        logger.info(f"[daily_scheduler] Scheduling videos for channel {channel_id}")
        report: dict[str, Any] = {"channel_id": channel_id, "scheduled": 0, "existing": 0, "target": 0, "skipped": None}

        channel = await self.store.get_channel(channel_id)
        if channel is None or not channel.enabled:
            logger.warning(f"[daily_scheduler] Channel {channel_id} not found or disabled")
            report["skipped"] = "not_found" if channel is None else "disabled"
            return report

        videos_per_day = channel.videos_per_day or self.settings.videos_per_day
        report["target"] = videos_per_day

        queued = await self.queue.list_jobs(PENDING_QUEUE_STATES)
        existing_count = sum(1 for job in queued if job.channel_id == channel_id)
        report["existing"] = existing_count
        logger.info(f"[daily_scheduler] Channel {channel_id} has {existing_count} existing scheduled jobs")

        if existing_count >= videos_per_day:
            logger.info(
                f"[daily_scheduler] Channel {channel_id} already has enough scheduled jobs "
                f"({existing_count}/{videos_per_day})"
            )
            report["skipped"] = "target_met"
            return report

        slots_needed = videos_per_day - existing_count
        slots = generate_schedule_slots(
            slots_needed,
            jitter_minutes=self.settings.schedule_jitter_minutes,
            rng=self.rng,
        )
        niches = channel_niches(channel, self.settings.default_niches)

        for slot in slots:
            niche = self.rng.choice(niches)
            payload = ShortVideoPayload(channel_id=channel_id, niche=niche, scheduled_at=slot.scheduled_at)
            delay_ms = max(0, int((slot.scheduled_at - datetime.now(timezone.utc)).total_seconds() * 1000))

            job = await self.queue.enqueue(
                CREATE_VIDEO,
                payload,
                delay_ms=delay_ms,
                job_id=scheduled_job_id(channel_id, slot.scheduled_at),
            )
            if job is None:
                continue
            report["scheduled"] += 1
            logger.info(
                f"[daily_scheduler] Scheduled {niche} video for {channel_id} at "
                f"{slot.scheduled_at:%Y-%m-%d %H:%M:%S} (in {round(delay_ms / 60000)} min)"
            )

        logger.info(f"[daily_scheduler] Scheduled {report['scheduled']} video jobs for channel {channel_id}")
        return report

    async def schedule_all_channels(self) -> dict[str, Any]:
        """Reconcile every enabled channel; one channel's failure never stops the rest."""
        logger.info("[daily_scheduler] Scheduling videos for all enabled channels")
        channels = await self.store.get_all_enabled_channels()

        channel_reports: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        for channel in channels:
            channel_id = channel.id
            try:
                channel_reports.append(await self.schedule_channel_videos(channel_id))
            except Exception as e:
                logger.exception(f"[daily_scheduler] Failed to schedule channel {channel_id}: {e}")
                errors.append({"channel_id": channel_id, "error": str(e)})

        total = sum(r["scheduled"] for r in channel_reports)
        logger.info(
            f"[daily_scheduler] Scheduling completed for {len(channels)} channels "
            f"({total} jobs enqueued, {len(errors)} errors)"
        )
        return {
            "channels_processed": len(channels),
            "jobs_scheduled": total,
            "channels": channel_reports,
            "errors": errors,
        }

    async def get_queue_stats(self) -> dict[str, int]:
        return await get_queue_stats(self.queue)


async def get_queue_stats(queue: VideoQueue) -> dict[str, int]:
    counts = await queue.counts()
    waiting, active, delayed, failed = counts["waiting"], counts["active"], counts["delayed"], counts["failed"]
    return {
        "waiting": waiting,
        "active": active,
        "delayed": delayed,
        "failed": failed,
        "total": waiting + active + delayed,
    }
