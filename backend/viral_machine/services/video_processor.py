"""
Video processor — runs one create-video job through the pipeline:

    generating -> thumbnail -> rendering -> uploading -> published

Each stage is persisted on the queued job before it starts, so a failure is
recorded at the stage reached. Content generation degrades to templates when
the AI generator fails. Uploads go through the "youtube_upload" circuit
breaker inside retry_with_backoff.

Nothing is rolled back on failure: the Video row (if created) is marked
failed and the exception is re-raised for the orchestrator.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from viral_machine.errors import ConfigurationError
from viral_machine.integrations.youtube_uploader import Uploader, UploadRequest, UploadResult, YouTubeUploader
from viral_machine.models import Video
from viral_machine.services.channel_store import ChannelStore
from viral_machine.services.content_generator import (
    ContentGenerator,
    GeneratedContent,
    TemplateContentGenerator,
    default_content_generator,
)
from viral_machine.services.jobs import LONG_VIDEO, SHORT_VIDEO, Job, JobStatus
from viral_machine.services.notify import Notifier, get_notifier
from viral_machine.services.renderer import FFmpegRenderer, Renderer, RenderResult
from viral_machine.services.retry import CircuitBreakerRegistry, retry_with_backoff
from viral_machine.services.video_queue import VideoQueue
from viral_machine.settings import Settings, get_settings

if TYPE_CHECKING:
    from viral_machine.services.orchestrator import JobHandler

logger = logging.getLogger(__name__)

UPLOAD_BREAKER = "youtube_upload"


class VideoProcessor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: VideoQueue,
        *,
        generator: ContentGenerator,
        fallback_generator: ContentGenerator | None = None,
        renderer: Renderer,
        uploader: Uploader,
        notifier: Notifier,
        breakers: CircuitBreakerRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.generator = generator
        self.fallback_generator = fallback_generator or TemplateContentGenerator()
        self.renderer = renderer
        self.uploader = uploader
        self.notifier = notifier
        self.breakers = breakers or CircuitBreakerRegistry.from_settings()
        self.settings = settings or get_settings()

    async def process(self, job: Job) -> dict[str, Any]:
        """Run the full pipeline for a claimed job and complete it."""
        payload = job.decoded_payload()
        channel_id, niche = payload.channel_id, payload.niche
        kind = "long" if payload.type == LONG_VIDEO else "short"

        async with self.session_factory() as session:
            channel = await ChannelStore(session).get_channel(channel_id)
        if channel is None:
            raise ConfigurationError(f"Channel {channel_id} not found")
        if not channel.refresh_token:
            raise ConfigurationError(f"Channel {channel_id} has no upload credential")

        logger.info(f"[video_processor] Job {job.id}: {kind} video for {channel_id} ({niche})")
        self.notifier.dispatch(channel_id, "started", {"job_id": job.id, "niche": niche, "type": payload.type})

        stage = job.status.value
        video_id: str | None = None

        async def enter(status: JobStatus | str) -> None:
            nonlocal stage
            stage = JobStatus(status).value
            await self.queue.update_status(job.id, status)

        try:
            await enter(JobStatus.generating)
            content = await self._generate(niche, kind)

            rendered = await self.renderer.render(job.id, content, on_stage=enter)
            video_id = await self._create_video(job, channel_id, kind, content, rendered)

            await enter(JobStatus.uploading)
            self.notifier.dispatch(channel_id, "uploading", {"video_id": video_id, "title": content.title})

            request = UploadRequest(
                video_path=rendered.video_path,
                title=content.title,
                description=content.description,
                channel_credential=channel.refresh_token,
                tags=content.hashtags,
                thumbnail_path=rendered.thumbnail_path,
            )
            upload = await self._upload(request, job.id)
            await self._mark_video(video_id, "published", youtube_id=upload.external_video_id, url=upload.url,
                                   uploaded_at=datetime.now(timezone.utc))
        except Exception as e:
            logger.error(f"[video_processor] Job {job.id} failed at stage {stage}: {e}")
            if video_id is not None:
                await self._mark_video(video_id, "failed", error_message=str(e)[:1000])
            self.notifier.dispatch(channel_id, "failed", {"job_id": job.id, "stage": stage, "error": str(e)[:300]})
            raise

        result = {
            "video_id": video_id,
            "youtube_id": upload.external_video_id,
            "url": upload.url,
            "title": content.title,
        }
        await self.queue.complete(job.id, result)
        self.notifier.dispatch(channel_id, "completed", result)
        logger.info(f"[video_processor] Job {job.id} published as {upload.external_video_id}")
        return result

    async def _generate(self, niche: str, kind: str) -> GeneratedContent:
        try:
            return await self.generator.generate(niche, kind)
        except Exception as e:
            if self.generator is self.fallback_generator:
                raise
            logger.warning(f"[video_processor] AI generation failed ({e}), using fallback templates")
            return await self.fallback_generator.generate(niche, kind)

    async def _upload(self, request: UploadRequest, job_id: str) -> UploadResult:
        async def attempt() -> UploadResult:
            return await self.breakers.call(UPLOAD_BREAKER, lambda: self.uploader.upload(request))

        return await retry_with_backoff(
            attempt,
            self.settings.upload_max_retries,
            self.settings.retry_backoff_ms,
            operation_name=f"upload job {job_id}",
        )

    async def _create_video(
        self,
        job: Job,
        channel_id: str,
        kind: str,
        content: GeneratedContent,
        rendered: RenderResult,
    ) -> str:
        video = Video(
            id=uuid.uuid4().hex,
            channel_id=channel_id,
            job_id=job.id,
            type=kind,
            niche=content.niche,
            title=content.title,
            description=content.description,
            script=content.script,
            status="ready",
            file_path=str(rendered.video_path),
            thumbnail_path=str(rendered.thumbnail_path),
        )
        async with self.session_factory() as session:
            session.add(video)
            await session.commit()
        return video.id

    async def _mark_video(self, video_id: str, status: str, **fields: Any) -> None:
        async with self.session_factory() as session:
            video = await session.get(Video, video_id)
            if video is None:
                logger.warning(f"[video_processor] Video {video_id} vanished before status {status}")
                return
            video.status = status
            for key, value in fields.items():
                setattr(video, key, value)
            await session.commit()


def build_default_handlers(queue: VideoQueue) -> dict[str, JobHandler]:
    """Handlers for both payload types backed by the production collaborators."""
    from viral_machine.db import AsyncSessionLocal

    processor = VideoProcessor(
        AsyncSessionLocal,
        queue,
        generator=default_content_generator(),
        fallback_generator=TemplateContentGenerator(),
        renderer=FFmpegRenderer(),
        uploader=YouTubeUploader(),
        notifier=get_notifier(),
        breakers=CircuitBreakerRegistry.from_settings(),
    )
    return {SHORT_VIDEO: processor.process, LONG_VIDEO: processor.process}
