"""
Queue, job and worker control endpoints.
"""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .errors import ConfigurationError, UnknownJobType
from .schemas import JobCreate, JobRead, QueueStats
from .services.daily_scheduler import get_queue_stats
from .services.orchestrator import Orchestrator, get_orchestrator
from .services.video_queue import QUEUE_STATES, VideoQueue, get_video_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["queue"])

QueueDep = Annotated[VideoQueue, Depends(get_video_queue)]
OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(queue: QueueDep) -> dict:
    return await get_queue_stats(queue)


@router.get("/queue/jobs", response_model=list[JobRead])
async def list_queue_jobs(
    queue: QueueDep,
    state: list[str] = Query(default=["waiting", "delayed", "active"]),
    channel_id: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
) -> list[dict]:
    unknown = [s for s in state if s not in QUEUE_STATES]
    if unknown:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown states: {unknown}")
    jobs = await queue.list_jobs(state)
    if channel_id:
        jobs = [j for j in jobs if j.channel_id == channel_id]
    jobs.sort(key=lambda j: j.scheduled_at or j.created_at)
    return [j.model_dump(mode="json") for j in jobs[:limit]]


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
async def create_job(body: JobCreate, orchestrator: OrchestratorDep) -> dict:
    """Enqueue an immediate job for a channel."""
    try:
        job_id = await orchestrator.create_job(body.type, body.channel_id, body.niche, body.priority)
    except (UnknownJobType, ConfigurationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"success": True, "job_id": job_id}


@router.get("/workers")
async def workers_status(orchestrator: OrchestratorDep) -> dict:
    return orchestrator.status()


@router.post("/workers/start")
async def start_workers(orchestrator: OrchestratorDep) -> dict:
    orchestrator.enable_workers()
    return {"success": True, **orchestrator.status()}


@router.post("/workers/stop")
async def stop_workers(orchestrator: OrchestratorDep) -> dict:
    """Stop picking up new jobs; running jobs finish."""
    orchestrator.disable_workers()
    return {"success": True, **orchestrator.status()}
