import time
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from viral_machine.errors import InvalidTransition, TransientError
from viral_machine.services.jobs import CREATE_VIDEO, JobStatus, ShortVideoPayload
from viral_machine.services.video_queue import QueuePolicy, VideoQueue


def payload(channel_id="UC_a", niche="Motivational"):
    return ShortVideoPayload(channel_id=channel_id, niche=niche)


async def test_enqueue_same_id_twice_is_noop(queue):
    first = await queue.enqueue(CREATE_VIDEO, payload(), job_id="UC_a-1000", delay_ms=60_000)
    second = await queue.enqueue(CREATE_VIDEO, payload(niche="Finance"), job_id="UC_a-1000", delay_ms=60_000)

    assert first is not None
    assert second is None
    jobs = await queue.list_jobs(["waiting", "delayed"])
    assert [j.id for j in jobs] == ["UC_a-1000"]
    assert jobs[0].niche == "Motivational"


async def test_delayed_job_not_claimable_until_due(queue):
    job = await queue.enqueue(CREATE_VIDEO, payload(), delay_ms=3_600_000)

    assert await queue.claim(3) == []
    counts = await queue.counts()
    assert counts["delayed"] == 1 and counts["waiting"] == 0

    promoted = await queue.promote_due(now_ms=int(time.time() * 1000) + 3_600_001)
    assert promoted == 1
    claimed = await queue.claim(3)
    assert [j.id for j in claimed] == [job.id]


async def test_claim_orders_by_priority_then_fifo(queue):
    low_1 = await queue.enqueue(CREATE_VIDEO, payload(), job_id="low-1")
    time.sleep(0.002)
    low_2 = await queue.enqueue(CREATE_VIDEO, payload(), job_id="low-2")
    high = await queue.enqueue(CREATE_VIDEO, payload(), job_id="high", priority=5)

    claimed = await queue.claim(3)
    assert [j.id for j in claimed] == [high.id, low_1.id, low_2.id]


async def test_extreme_priorities_keep_fifo_order(queue):
    first = await queue.enqueue(CREATE_VIDEO, payload(), job_id="first", priority=100)
    second = await queue.enqueue(CREATE_VIDEO, payload(), job_id="second", priority=100)
    second_score = await queue.redis.zscore(queue._state_key("waiting"), second.id)
    first_score = await queue.redis.zscore(queue._state_key("waiting"), first.id)

    assert first_score <= second_score
    assert first_score == queue._waiting_score(first)
    with pytest.raises(ValueError):
        await queue.enqueue(CREATE_VIDEO, payload(), job_id="too-high", priority=101)
    assert await queue.get_job("too-high") is None


async def test_claim_respects_limit_and_marks_processing(queue):
    for i in range(5):
        await queue.enqueue(CREATE_VIDEO, payload(), job_id=f"job-{i}")

    claimed = await queue.claim(2)
    assert len(claimed) == 2
    assert all(j.status == JobStatus.processing and j.started_at for j in claimed)

    counts = await queue.counts()
    assert counts["active"] == 2
    assert counts["waiting"] == 3
    assert await queue.claim(0) == []


async def test_job_claimed_once(queue):
    await queue.enqueue(CREATE_VIDEO, payload(), job_id="only")
    other = VideoQueue(queue.redis, name=queue.name)

    first = await queue.claim(1)
    second = await other.claim(1)
    assert len(first) == 1
    assert second == []


async def test_connection_drop_during_claim_leaves_job_waiting(queue, broken_transaction):
    await queue.enqueue(CREATE_VIDEO, payload(), job_id="fragile")

    with broken_transaction():
        with pytest.raises(RedisConnectionError):
            await queue.claim(1)

    job = await queue.get_job("fragile")
    assert job.status == JobStatus.pending
    assert job.started_at is None
    counts = await queue.counts()
    assert counts["waiting"] == 1 and counts["active"] == 0
    assert [j.id for j in await queue.claim(1)] == ["fragile"]


async def test_connection_drop_mid_batch_returns_jobs_already_claimed(queue, broken_transaction):
    for job_id in ("a", "b", "c"):
        await queue.enqueue(CREATE_VIDEO, payload(), job_id=job_id)

    with broken_transaction(nth=2):
        claimed = await queue.claim(3)

    assert [j.id for j in claimed] == ["a"]
    assert {j.id for j in await queue.list_jobs(["waiting"])} == {"b", "c"}
    assert [j.id for j in await queue.list_jobs(["active"])] == ["a"]


async def test_connection_drop_during_enqueue_stores_nothing(queue, broken_transaction):
    with broken_transaction():
        with pytest.raises(RedisConnectionError):
            await queue.enqueue(CREATE_VIDEO, payload(), job_id="UC_a-2000", delay_ms=60_000)

    assert await queue.get_job("UC_a-2000") is None
    assert await queue.enqueue(CREATE_VIDEO, payload(), job_id="UC_a-2000", delay_ms=60_000) is not None
    assert (await queue.counts())["delayed"] == 1


async def test_lifecycle_to_published(queue):
    await queue.enqueue(CREATE_VIDEO, payload(), job_id="life")
    [job] = await queue.claim(1)
    for stage in (JobStatus.generating, JobStatus.thumbnail, JobStatus.rendering, JobStatus.uploading):
        await queue.update_status(job.id, stage)

    done = await queue.complete(job.id, {"youtube_id": "yt1"})
    assert done.status == JobStatus.published
    assert done.result == {"youtube_id": "yt1"}
    assert await queue.get_job("life") is None  # removed on complete
    assert (await queue.counts())["active"] == 0


async def test_completed_jobs_kept_when_policy_says_so(redis_client):
    q = VideoQueue(redis_client, name="keep", policy=QueuePolicy(remove_on_complete=False))
    await q.enqueue(CREATE_VIDEO, payload(), job_id="kept")
    [job] = await q.claim(1)
    for stage in (JobStatus.generating, JobStatus.thumbnail, JobStatus.rendering, JobStatus.uploading):
        await q.update_status(job.id, stage)
    await q.complete(job.id)

    [stored] = await q.list_jobs(["completed"])
    assert stored.status == JobStatus.published
    assert stored.completed_at is not None


async def test_illegal_transition_rejected(queue):
    await queue.enqueue(CREATE_VIDEO, payload(), job_id="skip")
    [job] = await queue.claim(1)

    with pytest.raises(InvalidTransition):
        await queue.update_status(job.id, JobStatus.uploading)
    with pytest.raises(InvalidTransition):
        await queue.complete(job.id)


async def test_fail_records_stage_and_error(queue):
    await queue.enqueue(CREATE_VIDEO, payload(), job_id="boom")
    [job] = await queue.claim(1)
    await queue.update_status(job.id, JobStatus.generating)
    await queue.update_status(job.id, JobStatus.thumbnail)

    failed = await queue.fail(job.id, RuntimeError("ffmpeg exploded"))
    assert failed.status == JobStatus.failed
    assert failed.failed_stage == "thumbnail"
    assert failed.error == "ffmpeg exploded"

    counts = await queue.counts()
    assert counts["failed"] == 1 and counts["active"] == 0

    with pytest.raises(InvalidTransition):
        await queue.update_status(job.id, JobStatus.processing)


async def test_retryable_failure_redelivered_with_backoff(redis_client):
    q = VideoQueue(redis_client, name="retry", policy=QueuePolicy(attempts=3, backoff_ms=1000))
    await q.enqueue(CREATE_VIDEO, payload(), job_id="flaky")
    [job] = await q.claim(1)

    before_ms = int(time.time() * 1000)
    retried = await q.fail(job.id, TransientError("503", code="service_unavailable"), retryable=True)
    assert retried.status == JobStatus.pending
    assert retried.retry_count == 1
    assert retried.failed_stage == "processing"

    score = await redis_client.zscore("retry:delayed", "flaky")
    assert before_ms + 1000 <= score <= int(time.time() * 1000) + 1000

    await q.promote_due(now_ms=int(score) + 1)
    [again] = await q.claim(1)
    retried = await q.fail(again.id, TransientError("503"), retryable=True)
    assert retried.retry_count == 2
    score_2 = await redis_client.zscore("retry:delayed", "flaky")
    assert score_2 - int(time.time() * 1000) > 1000  # doubled delay

    await q.promote_due(now_ms=int(score_2) + 1)
    [last] = await q.claim(1)
    final = await q.fail(last.id, TransientError("503"), retryable=True)
    assert final.status == JobStatus.failed


async def test_non_retryable_failure_is_terminal_even_with_attempts_left(redis_client):
    q = VideoQueue(redis_client, name="strict", policy=QueuePolicy(attempts=5))
    await q.enqueue(CREATE_VIDEO, payload(), job_id="cfg")
    [job] = await q.claim(1)

    failed = await q.fail(job.id, "missing credentials", retryable=False)
    assert failed.status == JobStatus.failed
    assert failed.retry_count == 0


async def test_list_jobs_rejects_unknown_state(queue):
    with pytest.raises(ValueError):
        await queue.list_jobs(["paused"])


async def test_find_stalled(queue):
    await queue.enqueue(CREATE_VIDEO, payload(), job_id="stuck")
    [job] = await queue.claim(1)
    await queue.redis.zadd(queue._state_key("active"), {job.id: 0})

    stalled = await queue.find_stalled(timedelta(minutes=90))
    assert [j.id for j in stalled] == ["stuck"]
    assert await queue.find_stalled(timedelta(days=365 * 100)) == []


async def test_unknown_payload_type_still_enqueued(queue):
    job = await queue.enqueue(CREATE_VIDEO, {"type": "podcast", "channel_id": "UC_a", "niche": "x"})
    assert job.type == "podcast"
    [claimed] = await queue.claim(1)
    assert claimed.id == job.id
