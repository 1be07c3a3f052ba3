"""
Watchdog service — finds stuck jobs and marks them as failed.

Stuck criteria: job is in an active status (processing .. uploading) and was
claimed more than STUCK_JOB_MINUTES ago, e.g. because the process running it
died.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from viral_machine.services.video_queue import VideoQueue
from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)


async def run_watchdog(queue: VideoQueue, *, dry_run: bool = False) -> dict[str, Any]:
    """Fail stuck jobs. Returns a report dict."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    stalled = await queue.find_stalled(timedelta(minutes=settings.stuck_job_minutes))

    report_items: list[dict] = []
    for job in stalled:
        age_minutes = (now - job.started_at).total_seconds() / 60 if job.started_at else 0
        error_msg = f"watchdog: stuck {job.status.value} > {settings.stuck_job_minutes}m (age={age_minutes:.0f}m)"
        item = {
            "job_id": job.id,
            "channel_id": job.channel_id,
            "old_status": job.status.value,
            "age_minutes": round(age_minutes),
            "error_message": error_msg,
        }
        if not dry_run:
            await queue.fail(job.id, error_msg, retryable=False)
            item["action"] = "marked_failed"
        else:
            item["action"] = "would_mark_failed"
        report_items.append(item)

    if not dry_run and report_items:
        from viral_machine.services.notify import get_notifier

        summary = ", ".join(f"{it['job_id']}({it['old_status']} {it['age_minutes']}m)" for it in report_items[:10])
        await get_notifier().notify_warn(f"Watchdog: {len(report_items)} stuck jobs", summary)

    logger.info(f"[watchdog] Found {len(report_items)} stuck jobs (dry_run={dry_run})")
    return {
        "stuck_count": len(report_items),
        "items": report_items,
        "dry_run": dry_run,
        "run_at": now.isoformat(),
        "stuck_job_minutes": settings.stuck_job_minutes,
    }
