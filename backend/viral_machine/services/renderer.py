"""
Renderer interface and the default ffmpeg implementation.

FFmpegRenderer draws the title over a solid vertical background; it exists
so the pipeline runs end to end, richer editing belongs in another Renderer.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from viral_machine.services.content_generator import GeneratedContent
from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)

BACKGROUND_COLORS = ["0x1a1a2e", "0x16213e", "0x0f3460", "0x222831", "0x2d132c"]


@dataclass(frozen=True)
class RenderResult:
    video_path: Path
    thumbnail_path: Path


class Renderer(ABC):
    @abstractmethod
    async def render_thumbnail(self, job_id: str, content: GeneratedContent) -> Path:
        ...

    @abstractmethod
    async def render_video(self, job_id: str, content: GeneratedContent) -> Path:
        ...

    async def render(
        self,
        job_id: str,
        content: GeneratedContent,
        on_stage: Callable[[str], Awaitable[None]] | None = None,
    ) -> RenderResult:
        """Render the thumbnail, then the video.

        ``on_stage`` is awaited with "thumbnail" and "rendering" before each step.
        """
        if on_stage:
            await on_stage("thumbnail")
        thumbnail = await self.render_thumbnail(job_id, content)
        if on_stage:
            await on_stage("rendering")
        video = await self.render_video(job_id, content)
        return RenderResult(video_path=video, thumbnail_path=thumbnail)


async def run_cmd(cmd: list[str], timeout_sec: float) -> tuple[str, str]:
    """Run a command and return stdout/stderr."""
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_sec)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise RuntimeError(f"Command timed out after {timeout_sec}s: {' '.join(cmd[:5])}...")

    stdout_dec = stdout.decode(errors="ignore") if stdout else ""
    stderr_dec = stderr.decode(errors="ignore") if stderr else ""
    if proc.returncode != 0:
        raise RuntimeError(
            f"Command failed with code {proc.returncode}: {' '.join(cmd[:5])}...; "
            f"stderr: {stderr_dec[-400:]}"
        )
    return stdout_dec, stderr_dec


def _escape_drawtext(text: str) -> str:
    return text.replace("\\", "\\\\").replace(":", "\\:").replace("'", "’").replace("%", "\\%")


def _estimate_duration_sec(script: str, kind: str) -> int:
    # ~2.5 spoken words per second
    words = len(script.split())
    seconds = max(15, int(words / 2.5) + 3)
    return min(seconds, 59) if kind == "short" else seconds


class FFmpegRenderer(Renderer):
    def __init__(self, output_dir: str | Path | None = None, ffmpeg_bin: str | None = None):
        settings = get_settings()
        self.output_dir = Path(output_dir or settings.output_dir)
        self.ffmpeg_bin = ffmpeg_bin or settings.ffmpeg_bin
        self.timeout_sec = settings.ffmpeg_timeout_sec

    def _job_dir(self, job_id: str) -> Path:
        path = self.output_dir / job_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _size(self, kind: str) -> tuple[int, int]:
        return (1080, 1920) if kind == "short" else (1920, 1080)

    def _color(self, job_id: str) -> str:
        return BACKGROUND_COLORS[sum(map(ord, job_id)) % len(BACKGROUND_COLORS)]

    async def render_thumbnail(self, job_id: str, content: GeneratedContent) -> Path:
        width, height = self._size(content.kind)
        out = self._job_dir(job_id) / "thumbnail.jpg"
        title = _escape_drawtext(content.title[:60])
        cmd = [
            self.ffmpeg_bin, "-y",
            "-f", "lavfi", "-i", f"color=c={self._color(job_id)}:s={width}x{height}",
            "-vf", f"drawtext=text='{title}':fontcolor=white:fontsize=72:x=(w-text_w)/2:y=(h-text_h)/2",
            "-frames:v", "1",
            str(out),
        ]
        await run_cmd(cmd, self.timeout_sec)
        logger.info(f"[renderer] Thumbnail ready for {job_id}: {out}")
        return out

    async def render_video(self, job_id: str, content: GeneratedContent) -> Path:
        width, height = self._size(content.kind)
        out = self._job_dir(job_id) / "final.mp4"
        duration = _estimate_duration_sec(content.script, content.kind)
        title = _escape_drawtext(content.title[:60])
        cmd = [
            self.ffmpeg_bin, "-y",
            "-f", "lavfi", "-i", f"color=c={self._color(job_id)}:s={width}x{height}:d={duration}",
            "-f", "lavfi", "-i", f"anullsrc=r=44100:cl=stereo:d={duration}",
            "-vf", f"drawtext=text='{title}':fontcolor=white:fontsize=64:x=(w-text_w)/2:y=h*0.2",
            "-c:v", "libx264", "-pix_fmt", "yuv420p", "-r", "30",
            "-c:a", "aac", "-shortest",
            str(out),
        ]
        await run_cmd(cmd, self.timeout_sec)
        logger.info(f"[renderer] Video ready for {job_id}: {out} ({duration}s)")
        return out
