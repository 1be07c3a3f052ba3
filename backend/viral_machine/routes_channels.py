from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .models import Channel
from .schemas import ChannelCreate, ChannelRead, ChannelUpdate

router = APIRouter(prefix="/api/channels", tags=["channels"])

SessionDep = Annotated[AsyncSession, Depends(get_session)]


@router.get("", response_model=list[ChannelRead])
async def list_channels(
    session: SessionDep,
    enabled: bool | None = Query(default=None),
) -> list[Channel]:
    stmt = select(Channel).order_by(Channel.created_at.asc())
    if enabled is not None:
        stmt = stmt.where(Channel.enabled == enabled)
    result = await session.execute(stmt)
    return list(result.scalars().all())


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
async def create_channel(payload: ChannelCreate, session: SessionDep) -> Channel:
    """Register a channel after external authorization completed."""
    if await session.get(Channel, payload.id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Channel already exists")
    channel = Channel(**payload.model_dump())
    session.add(channel)
    await session.commit()
    await session.refresh(channel)
    return channel


@router.get("/{channel_id}", response_model=ChannelRead)
async def get_channel(channel_id: str, session: SessionDep) -> Channel:
    channel = await session.get(Channel, channel_id)
    if channel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found")
    return channel


@router.patch("/{channel_id}", response_model=ChannelRead)
async def update_channel(channel_id: str, payload: ChannelUpdate, session: SessionDep) -> Channel:
    channel = await session.get(Channel, channel_id)
    if channel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found")
    for field, value in payload.model_dump(exclude_unset=True).items():
        setattr(channel, field, value)
    await session.commit()
    await session.refresh(channel)
    return channel
