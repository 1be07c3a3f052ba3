"""
Admin endpoints: per-channel daily target and forced rescheduling.
"""
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .schemas import VideosPerDayUpdate
from .services.channel_store import ChannelStore
from .services.daily_scheduler import ChannelScheduler
from .services.video_queue import VideoQueue, get_video_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]
QueueDep = Annotated[VideoQueue, Depends(get_video_queue)]

MIN_VIDEOS_PER_DAY = 1
MAX_VIDEOS_PER_DAY = 50


@router.post("/channels/{channel_id}/videos-per-day")
async def set_videos_per_day(
    channel_id: str,
    body: VideosPerDayUpdate,
    session: SessionDep,
    queue: QueueDep,
) -> dict:
    videos_per_day = body.videos_per_day
    if videos_per_day is None or not MIN_VIDEOS_PER_DAY <= videos_per_day <= MAX_VIDEOS_PER_DAY:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"videosPerDay must be between {MIN_VIDEOS_PER_DAY} and {MAX_VIDEOS_PER_DAY}",
        )

    store = ChannelStore(session)
    if await store.get_channel(channel_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found")

    await store.update_channel_field(channel_id, "videos_per_day", videos_per_day)
    logger.info(f"[admin] Updated videos per day setting for {channel_id}: {videos_per_day}")

    report = await ChannelScheduler(session, queue).schedule_channel_videos(channel_id)
    return {
        "success": True,
        "channel_id": channel_id,
        "videos_per_day": videos_per_day,
        "scheduled": report["scheduled"],
    }


@router.post("/channels/{channel_id}/reschedule")
async def reschedule_channel(channel_id: str, session: SessionDep, queue: QueueDep) -> dict:
    report = await ChannelScheduler(session, queue).schedule_channel_videos(channel_id)
    if report["skipped"] == "not_found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found")
    return {"success": True, "message": "Channel rescheduled successfully", **report}
