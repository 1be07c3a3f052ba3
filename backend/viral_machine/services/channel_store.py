"""
Channel store — read/update access to channel configuration.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from viral_machine.errors import ConfigurationError
from viral_machine.models import Channel

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"name", "refresh_token", "enabled", "niches", "videos_per_day", "watermark"}


class ChannelStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_channel(self, channel_id: str) -> Channel | None:
        return await self.session.get(Channel, channel_id)

    async def get_all_enabled_channels(self) -> list[Channel]:
        result = await self.session.execute(
            select(Channel).where(Channel.enabled == True).order_by(Channel.created_at.asc())  # noqa: E712
        )
        return list(result.scalars().all())

    async def update_channel_field(self, channel_id: str, field: str, value: Any) -> Channel:
        """Set one allow-listed field and commit.

        Raises:
            ConfigurationError: unknown channel or field
        """
        if field not in UPDATABLE_FIELDS:
            raise ConfigurationError(f"Field '{field}' is not updatable")
        channel = await self.get_channel(channel_id)
        if channel is None:
            raise ConfigurationError(f"Channel {channel_id} not found")
        setattr(channel, field, value)
        self.session.add(channel)
        await self.session.commit()
        await self.session.refresh(channel)
        logger.info(f"[channels] {channel_id}: {field} updated")
        return channel


def channel_niches(channel: Channel, default: list[str] | None = None) -> list[str]:
    """Configured niches, or ``default`` when none are set."""
    niches = [n for n in (channel.niches or []) if isinstance(n, str) and n.strip()]
    return niches or list(default or ["Motivational"])
