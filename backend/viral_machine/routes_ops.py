"""
Operations endpoints — liveness and dependency health.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .services.daily_scheduler import get_queue_stats
from .services.video_queue import VideoQueue, get_video_queue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ops"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]
QueueDep = Annotated[VideoQueue, Depends(get_video_queue)]

_started_at = time.monotonic()


async def check_database(session: AsyncSession) -> dict[str, Any]:
    try:
        result = await session.execute(text("SELECT 1"))
        return {"status": "ok", "connected": result.scalar() == 1}
    except Exception as e:
        logger.error(f"[health] Database check failed: {e}")
        return {"status": "error", "message": str(e)}


async def check_redis(queue: VideoQueue) -> dict[str, Any]:
    try:
        connected = await queue.ping()
        return {"status": "ok" if connected else "error", "connected": connected}
    except Exception as e:
        logger.error(f"[health] Redis check failed: {e}")
        return {"status": "error", "message": str(e)}


async def check_queue(queue: VideoQueue) -> dict[str, Any]:
    try:
        return {"status": "ok", **(await get_queue_stats(queue))}
    except Exception as e:
        logger.error(f"[health] Queue check failed: {e}")
        return {"status": "error", "message": str(e)}


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/healthz")
async def healthz(session: SessionDep, queue: QueueDep):
    """Dependency health: 200 when everything is reachable, 503 otherwise."""
    services = {
        "database": await check_database(session),
        "redis": await check_redis(queue),
        "queue": await check_queue(queue),
    }
    overall = "ok" if all(s["status"] == "ok" for s in services.values()) else "degraded"
    body = {
        "status": overall,
        "uptime": round(time.monotonic() - _started_at, 1),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services,
    }
    return JSONResponse(body, status_code=200 if overall == "ok" else 503)
