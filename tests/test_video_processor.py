from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from viral_machine.errors import CircuitOpenError, ConfigurationError, TransientError
from viral_machine.integrations.youtube_uploader import Uploader, UploadResult
from viral_machine.models import Video
from viral_machine.services.content_generator import (
    FALLBACK_TEMPLATES,
    ContentGenerator,
    GeneratedContent,
    TemplateContentGenerator,
)
from viral_machine.services.jobs import CREATE_VIDEO, JobStatus, LongVideoPayload, ShortVideoPayload
from viral_machine.services.notify import Notifier
from viral_machine.services.orchestrator import Orchestrator
from viral_machine.services.renderer import FFmpegRenderer, Renderer
from viral_machine.services.retry import CircuitBreakerRegistry
from viral_machine.services.video_processor import VideoProcessor
from viral_machine.settings import get_settings


class StaticGenerator(ContentGenerator):
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def generate(self, niche, kind="short"):
        self.calls.append((niche, kind))
        if self.error:
            raise self.error
        return GeneratedContent(
            script="Three habits that compound.",
            titles=["Habits That Compound"],
            description="desc",
            hashtags=["#habits"],
            niche=niche,
            kind=kind,
            generated_by="test-model",
        )


class FileRenderer(Renderer):
    def __init__(self, root: Path, fail_at: str | None = None):
        self.root = root
        self.fail_at = fail_at

    async def render_thumbnail(self, job_id, content):
        if self.fail_at == "thumbnail":
            raise RuntimeError("font missing")
        path = self.root / f"{job_id}.jpg"
        path.write_bytes(b"jpg")
        return path

    async def render_video(self, job_id, content):
        if self.fail_at == "rendering":
            raise RuntimeError("ffmpeg exited with 1")
        path = self.root / f"{job_id}.mp4"
        path.write_bytes(b"mp4")
        return path


class ScriptedUploader(Uploader):
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    async def upload(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


UPLOADED = UploadResult(external_video_id="yt123", url="https://youtube.com/watch?v=yt123")


@pytest.fixture
def notifier():
    return MagicMock(spec=Notifier)


@pytest.fixture
def make_processor(session_factory, queue, tmp_path, notifier):
    def _make(generator=None, uploader=None, breakers=None, renderer=None):
        settings = get_settings().model_copy(update={"upload_max_retries": 3, "retry_backoff_ms": 1})
        return VideoProcessor(
            session_factory,
            queue,
            generator=generator or StaticGenerator(),
            fallback_generator=TemplateContentGenerator(),
            renderer=renderer or FileRenderer(tmp_path),
            uploader=uploader or ScriptedUploader(UPLOADED),
            notifier=notifier,
            breakers=breakers or CircuitBreakerRegistry(failure_threshold=5, reset_timeout_sec=60),
            settings=settings,
        )

    return _make


async def claim_one(queue, payload):
    await queue.enqueue(CREATE_VIDEO, payload, job_id="job-1")
    [job] = await queue.claim(1)
    return job


async def videos(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Video))
        return list(result.scalars().all())


async def test_happy_path_publishes(make_processor, queue, make_channel, session_factory, notifier):
    await make_channel("UC_a")
    uploader = ScriptedUploader(UPLOADED)
    processor = make_processor(uploader=uploader)
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_a", niche="Finance"))

    result = await processor.process(job)

    assert result["youtube_id"] == "yt123"
    assert await queue.get_job(job.id) is None  # completed and removed
    [video] = await videos(session_factory)
    assert video.status == "published"
    assert video.youtube_id == "yt123"
    assert video.job_id == job.id
    assert video.type == "short"
    assert uploader.requests[0].channel_credential == "refresh-token"
    assert uploader.requests[0].title == "Habits That Compound"
    events = [c.args[1] for c in notifier.dispatch.call_args_list]
    assert events == ["started", "uploading", "completed"]


@pytest.mark.parametrize("stage", ["thumbnail", "rendering"])
async def test_render_failure_stops_at_stage_reached(
    make_processor, queue, make_channel, session_factory, tmp_path, stage
):
    await make_channel("UC_a")
    uploader = ScriptedUploader(UPLOADED)
    processor = make_processor(uploader=uploader, renderer=FileRenderer(tmp_path, fail_at=stage))
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_a", niche="Finance"))

    with pytest.raises(RuntimeError):
        await processor.process(job)

    assert (await queue.get_job(job.id)).status == JobStatus(stage)
    assert await videos(session_factory) == []
    assert uploader.requests == []


async def test_long_video_payload_renders_long_kind(make_processor, queue, make_channel):
    await make_channel("UC_a")
    generator = StaticGenerator()
    job = await claim_one(queue, LongVideoPayload(channel_id="UC_a", niche="Finance"))

    await make_processor(generator=generator).process(job)

    assert generator.calls == [("Finance", "long")]


async def test_generation_failure_falls_back_to_templates(make_processor, queue, make_channel, session_factory):
    await make_channel("UC_a")
    processor = make_processor(generator=StaticGenerator(RuntimeError("OpenAI 401")))
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_a", niche="Motivational"))

    await processor.process(job)

    [video] = await videos(session_factory)
    assert video.status == "published"
    assert video.script in FALLBACK_TEMPLATES["Motivational"]["short"]["scripts"]


async def test_transient_upload_errors_are_retried(make_processor, queue, make_channel):
    await make_channel("UC_a")
    uploader = ScriptedUploader(TransientError("503", code="service_unavailable"), TransientError("503"), UPLOADED)
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_a", niche="Finance"))

    result = await make_processor(uploader=uploader).process(job)

    assert result["youtube_id"] == "yt123"
    assert len(uploader.requests) == 3


async def test_upload_failure_marks_video_and_job_failed(make_processor, queue, make_channel, session_factory, notifier):
    await make_channel("UC_a")
    processor = make_processor(uploader=ScriptedUploader(RuntimeError("Upload error 403: forbidden")))
    await queue.enqueue(CREATE_VIDEO, ShortVideoPayload(channel_id="UC_a", niche="Finance"), job_id="job-1")
    orchestrator = Orchestrator(queue, {"short_video": processor.process}, workers_enabled=True)

    await orchestrator.tick()
    await orchestrator.wait_idle()

    job = await queue.get_job("job-1")
    assert job.status == JobStatus.failed
    assert job.failed_stage == "uploading"
    assert "403" in job.error
    [video] = await videos(session_factory)
    assert video.status == "failed"
    assert "403" in video.error_message
    assert notifier.dispatch.call_args_list[-1].args[1] == "failed"
    assert orchestrator.active_jobs == 0


async def test_open_circuit_stops_retrying(make_processor, queue, make_channel):
    await make_channel("UC_a")
    uploader = ScriptedUploader(TransientError("503", code="service_unavailable"))
    breakers = CircuitBreakerRegistry(failure_threshold=2, reset_timeout_sec=60)
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_a", niche="Finance"))

    with pytest.raises(CircuitOpenError):
        await make_processor(uploader=uploader, breakers=breakers).process(job)

    assert len(uploader.requests) == 2
    assert breakers.get("youtube_upload").state.value == "OPEN"


async def test_missing_channel_is_configuration_error(make_processor, queue):
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_ghost", niche="Finance"))
    with pytest.raises(ConfigurationError):
        await make_processor().process(job)


async def test_missing_credential_is_configuration_error(make_processor, queue, make_channel):
    await make_channel("UC_a", refresh_token=None)
    job = await claim_one(queue, ShortVideoPayload(channel_id="UC_a", niche="Finance"))
    with pytest.raises(ConfigurationError):
        await make_processor().process(job)


async def test_ffmpeg_renderer_writes_into_job_dir(tmp_path):
    renderer = FFmpegRenderer(output_dir=tmp_path, ffmpeg_bin="ffmpeg")
    content = await TemplateContentGenerator().generate("Finance")

    with patch("viral_machine.services.renderer.run_cmd", new=AsyncMock(return_value=("", ""))) as run_cmd:
        result = await renderer.render("job-9", content)

    assert result.thumbnail_path == tmp_path / "job-9" / "thumbnail.jpg"
    assert result.video_path == tmp_path / "job-9" / "final.mp4"
    first_cmd = run_cmd.await_args_list[0].args[0]
    assert first_cmd[0] == "ffmpeg"
    assert "1080x1920" in " ".join(first_cmd)
