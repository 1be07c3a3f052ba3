"""
Scheduler API Routes

Endpoints for the periodic job scheduler and manual scheduling runs.
"""
from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .services.daily_scheduler import ChannelScheduler
from .services.scheduler import scheduler_service
from .services.video_queue import VideoQueue, get_video_queue

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]
QueueDep = Annotated[VideoQueue, Depends(get_video_queue)]


class SchedulerStatus(BaseModel):
    running: bool
    jobs_count: int
    jobs: list[dict]


@router.get("/status", response_model=SchedulerStatus)
async def get_scheduler_status():
    """Get scheduler status and list of jobs."""
    jobs = scheduler_service.get_jobs()
    return SchedulerStatus(
        running=scheduler_service.is_running(),
        jobs_count=len(jobs),
        jobs=jobs,
    )


@router.post("/run-all", response_model=dict)
async def run_all(session: SessionDep, queue: QueueDep):
    """Reconcile every enabled channel right now."""
    return await ChannelScheduler(session, queue).schedule_all_channels()


@router.post("/jobs/{job_id}/run", response_model=dict)
async def run_job_now(job_id: str):
    """Run a specific periodic job immediately."""
    result = await scheduler_service.run_now(job_id)
    if result.get("not_found"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result["error"])
    if "error" in result:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result["error"])
    return result


@router.post("/watchdog", response_model=dict)
async def run_watchdog_endpoint(queue: QueueDep, dry_run: bool = Query(default=True)):
    """Find jobs stuck in an active stage (dry run by default)."""
    from .services.watchdog_service import run_watchdog

    return await run_watchdog(queue, dry_run=dry_run)
