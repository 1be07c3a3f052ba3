from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .services.jobs import MAX_PRIORITY


class ChannelBase(BaseModel):
    name: str
    enabled: bool = True
    niches: list[str] | None = None
    videos_per_day: int | None = Field(default=None, ge=1, le=50)
    watermark: str | None = None

    @field_validator("niches")
    @classmethod
    def strip_niches(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [n.strip() for n in value if n and n.strip()]


class ChannelCreate(ChannelBase):
    id: str = Field(min_length=1, max_length=64)
    refresh_token: str | None = None


class ChannelUpdate(BaseModel):
    name: str | None = None
    refresh_token: str | None = None
    enabled: bool | None = None
    niches: list[str] | None = None
    videos_per_day: int | None = Field(default=None, ge=1, le=50)
    watermark: str | None = None


class ChannelRead(ChannelBase):
    model_config = ConfigDict(from_attributes=True)

    id: str
    has_credential: bool = False
    created_at: datetime
    updated_at: datetime


class VideosPerDayUpdate(BaseModel):
    # range is checked by the route so violations answer 400, not 422
    videos_per_day: int | None = Field(
        default=None, validation_alias=AliasChoices("videosPerDay", "videos_per_day")
    )


class JobCreate(BaseModel):
    type: str = Field(default="short_video", validation_alias=AliasChoices("type", "jobType"))
    channel_id: str = Field(validation_alias=AliasChoices("channel_id", "channelId"))
    niche: str
    priority: int = Field(default=0, ge=-MAX_PRIORITY, le=MAX_PRIORITY)


class JobRead(BaseModel):
    id: str
    name: str
    type: str
    channel_id: str | None
    niche: str | None
    status: str
    priority: int
    created_at: datetime
    scheduled_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    error: str | None
    failed_stage: str | None
    retry_count: int
    result: dict[str, Any] | None = None


class QueueStats(BaseModel):
    waiting: int
    active: int
    delayed: int
    failed: int
    total: int
