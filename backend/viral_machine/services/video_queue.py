"""
Redis-backed durable delayed queue for video jobs.

Layout (prefix = queue name, e.g. "video-processing"):
- {prefix}:job:{id}   JSON document of the Job (SET NX gives idempotent enqueue)
- {prefix}:delayed    ZSET, score = ready-at epoch ms
- {prefix}:waiting    ZSET, score orders priority desc then created_at asc
- {prefix}:active     ZSET, score = started-at epoch ms (stall detection)
- {prefix}:failed     ZSET, score = failed-at epoch ms
- {prefix}:completed  ZSET, only kept when remove_on_complete is off

Every move between sets runs as one MULTI/EXEC transaction together with the
job document write, so a job is never left outside all sets. Moves out of
waiting or delayed WATCH the job key: whoever commits first owns the job, so
several orchestrator processes never run the same job twice.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError, WatchError

from viral_machine.services.jobs import (
    ACTIVE_STATUSES,
    CREATE_VIDEO,
    MAX_PRIORITY,
    Job,
    JobStatus,
)
from viral_machine.settings import Settings, get_settings

logger = logging.getLogger(__name__)

QUEUE_STATES = ("waiting", "delayed", "active", "completed", "failed")

# priority weight in the waiting score; must exceed any epoch-ms value (see MAX_PRIORITY)
_PRIORITY_WEIGHT = 10**13

_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """Get or create a shared async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_client


def _now_ms() -> int:
    return int(time.time() * 1000)


def _from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class QueuePolicy:
    """Retry and retention policy applied by the queue to failed/finished jobs."""

    attempts: int = 1
    backoff_ms: int = 60000
    remove_on_complete: bool = True
    remove_on_fail: bool = False

    def backoff_delay_ms(self, retry_count: int) -> int:
        """Exponential delay before re-delivery number ``retry_count`` (1-based)."""
        return self.backoff_ms * (2 ** max(0, retry_count - 1))

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueuePolicy":
        return cls(attempts=settings.queue_job_attempts, backoff_ms=settings.retry_backoff_ms)


class VideoQueue:
    """Durable delayed job queue."""

    def __init__(
        self,
        redis: aioredis.Redis,
        name: str = "video-processing",
        policy: QueuePolicy | None = None,
    ):
        self.redis = redis
        self.name = name
        self.policy = policy or QueuePolicy()

    # ── keys ──────────────────────────────────────────────────

    def _job_key(self, job_id: str) -> str:
        return f"{self.name}:job:{job_id}"

    def _state_key(self, state: str) -> str:
        return f"{self.name}:{state}"

    @staticmethod
    def _waiting_score(job: Job) -> float:
        created_ms = int(job.created_at.timestamp() * 1000)
        return created_ms - job.priority * _PRIORITY_WEIGHT

    # ── persistence helpers ───────────────────────────────────

    async def _save(self, job: Job) -> None:
        await self.redis.set(self._job_key(job.id), job.model_dump_json())

    async def _move(
        self,
        job_id: str,
        source: str,
        target: str,
        update: Callable[[Job], float],
    ) -> Job | None:
        """Move a job from ``source`` to ``target`` in one transaction.

        ``update`` mutates the loaded job and returns its score in ``target``.
        Returns None when the job already left ``source`` (another process won).
        """
        job_key = self._job_key(job_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(job_key)
                raw = await pipe.get(job_key)
                if await pipe.zscore(self._state_key(source), job_id) is None:
                    return None
                if raw is None:
                    logger.warning(f"[queue] {source.capitalize()} job {job_id} has no record, dropping")
                    await pipe.zrem(self._state_key(source), job_id)
                    return None
                job = Job.model_validate_json(raw)
                score = update(job)
                pipe.multi()
                pipe.zrem(self._state_key(source), job_id)
                pipe.set(job_key, job.model_dump_json())
                pipe.zadd(self._state_key(target), {job_id: score})
                await pipe.execute()
            except WatchError:
                return None
        return job

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self.redis.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    async def _load(self, job_or_id: Job | str) -> Job:
        job_id = job_or_id if isinstance(job_or_id, str) else job_or_id.id
        job = await self.get_job(job_id)
        if job is None:
            raise LookupError(f"Job {job_id} not found in queue '{self.name}'")
        return job

    # ── producer side ─────────────────────────────────────────

    async def enqueue(
        self,
        name: str,
        payload: BaseModel | dict[str, Any],
        *,
        delay_ms: int = 0,
        job_id: str | None = None,
        priority: int = 0,
    ) -> Job | None:
        """Add a job, delayed by ``delay_ms``.

        Returns the stored Job, or None when ``job_id`` already exists
        (idempotent re-enqueue of the same slot).
        """
        if abs(priority) > MAX_PRIORITY:
            raise ValueError(f"priority must be within ±{MAX_PRIORITY}, got {priority}")
        data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
        job_id = job_id or str(uuid.uuid4())
        now_ms = _now_ms()
        delay_ms = max(0, int(delay_ms))

        job = Job(
            id=job_id,
            name=name,
            type=data.get("type") or "unknown",
            channel_id=data.get("channel_id"),
            niche=data.get("niche"),
            priority=priority,
            payload=data,
            created_at=_from_ms(now_ms),
            scheduled_at=_from_ms(now_ms + delay_ms),
        )

        if delay_ms > 0:
            state, score = "delayed", now_ms + delay_ms
        else:
            state, score = "waiting", self._waiting_score(job)

        job_key = self._job_key(job_id)
        created = False
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(job_key)
                if not await pipe.exists(job_key):
                    pipe.multi()
                    pipe.set(job_key, job.model_dump_json())
                    pipe.zadd(self._state_key(state), {job_id: score})
                    await pipe.execute()
                    created = True
            except WatchError:
                pass  # enqueued concurrently under the same id
        if not created:
            logger.info(f"[queue] Job {job_id} already queued, skipping duplicate")
            return None

        logger.debug(f"[queue] Enqueued {name} job {job_id} (delay={delay_ms}ms, priority={priority})")
        return job

    async def promote_due(self, now_ms: int | None = None) -> int:
        """Move delayed jobs whose ready time has passed into the waiting set."""
        now_ms = _now_ms() if now_ms is None else now_ms
        due = await self.redis.zrangebyscore(self._state_key("delayed"), "-inf", now_ms)
        promoted = 0
        for job_id in due:
            if await self._move(job_id, "delayed", "waiting", self._waiting_score) is not None:
                promoted += 1
        if promoted:
            logger.debug(f"[queue] Promoted {promoted} delayed jobs")
        return promoted

    # ── consumer side ─────────────────────────────────────────

    async def claim(self, limit: int) -> list[Job]:
        """Claim up to ``limit`` ready jobs, priority desc then FIFO.

        Claimed jobs move to status ``processing`` and the active set.
        """
        if limit <= 0:
            return []
        await self.promote_due()

        def start(job: Job) -> float:
            now_ms = _now_ms()
            job.transition(JobStatus.processing)
            job.started_at = _from_ms(now_ms)
            return now_ms

        candidates = await self.redis.zrange(self._state_key("waiting"), 0, limit - 1)
        claimed: list[Job] = []
        for job_id in candidates:
            try:
                job = await self._move(job_id, "waiting", "active", start)
            except RedisError as e:
                if not claimed:
                    raise
                # already-claimed jobs are active and must still be dispatched
                logger.warning(f"[queue] Claim interrupted after {len(claimed)} jobs: {e}")
                break
            if job is not None:
                claimed.append(job)
        return claimed

    async def update_status(self, job_or_id: Job | str, status: JobStatus | str) -> Job:
        """Persist a lifecycle stage. Raises InvalidTransition on illegal moves."""
        job = await self._load(job_or_id)
        job.transition(JobStatus(status))
        await self._save(job)
        return job

    async def complete(self, job_or_id: Job | str, result: dict[str, Any] | None = None) -> Job:
        job = await self._load(job_or_id)
        now_ms = _now_ms()
        job.transition(JobStatus.published)
        job.completed_at = _from_ms(now_ms)
        job.result = result
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._state_key("active"), job.id)
            if self.policy.remove_on_complete:
                pipe.delete(self._job_key(job.id))
            else:
                pipe.set(self._job_key(job.id), job.model_dump_json())
                pipe.zadd(self._state_key("completed"), {job.id: now_ms})
            await pipe.execute()
        logger.info(f"[queue] Job {job.id} completed")
        return job

    async def fail(
        self,
        job_or_id: Job | str,
        error: BaseException | str,
        *,
        retryable: bool = False,
        count_attempt: bool = True,
    ) -> Job:
        """Record a failure.

        When the error is retryable and the policy has attempts left, the job
        goes back to pending with an exponential delay; otherwise it is
        terminally failed. ``count_attempt=False`` never re-delivers and leaves
        ``retry_count`` untouched (used for unknown job types).
        """
        job = await self._load(job_or_id)
        now_ms = _now_ms()
        message = str(error) if not isinstance(error, str) else error
        stage = job.status.value

        if (
            count_attempt
            and retryable
            and job.status in ACTIVE_STATUSES
            and job.retry_count + 1 < self.policy.attempts
        ):
            job.retry_count += 1
            delay_ms = self.policy.backoff_delay_ms(job.retry_count)
            job.transition(JobStatus.pending)
            job.error = message[:1000]
            job.failed_stage = stage
            job.started_at = None
            job.scheduled_at = _from_ms(now_ms + delay_ms)
            await self._replace(job, "delayed", now_ms + delay_ms)
            logger.warning(
                f"[queue] Job {job.id} failed at stage {stage}, re-delivery "
                f"{job.retry_count}/{self.policy.attempts - 1} in {delay_ms}ms: {message}"
            )
            return job

        job.transition(JobStatus.failed)
        job.error = message[:1000]
        job.failed_stage = stage
        job.completed_at = _from_ms(now_ms)
        await self._replace(job, None if self.policy.remove_on_fail else "failed", now_ms)
        logger.error(f"[queue] Job {job.id} failed at stage {stage}: {message}")
        return job

    async def _replace(self, job: Job, state: str | None, score: float) -> None:
        """Drop the job from every pending or active set and file it under ``state``.

        ``state=None`` deletes the job record.
        """
        async with self.redis.pipeline(transaction=True) as pipe:
            for pending in ("active", "waiting", "delayed"):
                pipe.zrem(self._state_key(pending), job.id)
            if state is None:
                pipe.delete(self._job_key(job.id))
            else:
                pipe.set(self._job_key(job.id), job.model_dump_json())
                pipe.zadd(self._state_key(state), {job.id: score})
            await pipe.execute()

    # ── inspection ────────────────────────────────────────────

    async def list_jobs(self, states: Iterable[str]) -> list[Job]:
        """Return jobs currently in any of ``states`` (see QUEUE_STATES)."""
        states = list(states)
        unknown = set(states) - set(QUEUE_STATES)
        if unknown:
            raise ValueError(f"Unknown queue states: {sorted(unknown)}")
        if "waiting" in states or "delayed" in states:
            await self.promote_due()

        job_ids: list[str] = []
        for state in states:
            job_ids.extend(await self.redis.zrange(self._state_key(state), 0, -1))
        if not job_ids:
            return []

        raws = await self.redis.mget([self._job_key(job_id) for job_id in job_ids])
        return [Job.model_validate_json(raw) for raw in raws if raw is not None]

    async def counts(self) -> dict[str, int]:
        await self.promote_due()
        return {state: await self.redis.zcard(self._state_key(state)) for state in QUEUE_STATES}

    async def find_stalled(self, older_than: timedelta) -> list[Job]:
        """Active jobs whose claim is older than ``older_than``."""
        cutoff_ms = _now_ms() - int(older_than.total_seconds() * 1000)
        job_ids = await self.redis.zrangebyscore(self._state_key("active"), "-inf", cutoff_ms)
        stalled: list[Job] = []
        for job_id in job_ids:
            job = await self.get_job(job_id)
            if job is not None and job.status in ACTIVE_STATUSES:
                stalled.append(job)
        return stalled

    async def ping(self) -> bool:
        return bool(await self.redis.ping())


_queue: VideoQueue | None = None


def get_video_queue() -> VideoQueue:
    """Process-wide queue bound to the configured Redis."""
    global _queue
    if _queue is None:
        settings = get_settings()
        _queue = VideoQueue(
            get_redis(),
            name=settings.queue_name,
            policy=QueuePolicy.from_settings(settings),
        )
    return _queue


def set_video_queue(queue: VideoQueue | None) -> None:
    global _queue
    _queue = queue


__all__ = ["CREATE_VIDEO", "QUEUE_STATES", "QueuePolicy", "VideoQueue", "get_video_queue", "set_video_queue"]
