"""
Pytest configuration and shared fixtures.

The environment is pinned before any viral_machine import so the cached
settings point at sqlite and never at real services.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "")
os.environ.setdefault("TELEGRAM_CHAT_ID", "")
os.environ.setdefault("OPENAI_API_KEY", "")

import random
from contextlib import contextmanager
from unittest.mock import patch

import fakeredis
import pytest
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from viral_machine import models  # noqa: F401
from viral_machine.db import Base
from viral_machine.models import Channel
from viral_machine.services.video_queue import QueuePolicy, VideoQueue


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def queue(redis_client):
    return VideoQueue(redis_client, name="test-queue", policy=QueuePolicy())


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_channel(session_factory):
    """Insert a channel row and return it."""

    async def _make(channel_id: str = "UC_test", **overrides) -> Channel:
        values = {
            "id": channel_id,
            "name": f"Channel {channel_id}",
            "refresh_token": "refresh-token",
            "enabled": True,
            "niches": ["Motivational"],
            "videos_per_day": None,
        }
        values.update(overrides)
        async with session_factory() as session:
            channel = Channel(**values)
            session.add(channel)
            await session.commit()
            await session.refresh(channel)
            return channel

    return _make


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def broken_transaction():
    """Make the ``nth`` Redis transaction from now on fail with a dropped connection."""

    @contextmanager
    def _broken(nth: int = 1):
        original = Pipeline.execute
        calls = 0

        async def execute(self, raise_on_error=True):
            nonlocal calls
            calls += 1
            if calls == nth:
                raise RedisConnectionError("Connection reset by peer")
            return await original(self, raise_on_error)

        with patch.object(Pipeline, "execute", execute):
            yield

    return _broken
