from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from viral_machine.errors import ConfigurationError, TransientError
from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
YT_UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
YT_THUMBNAIL_URL = "https://www.googleapis.com/upload/youtube/v3/thumbnails/set"
YT_WATCH_URL = "https://youtube.com/watch?v={video_id}"

SHORTS_CATEGORY_ID = "22"


@dataclass
class UploadRequest:
    video_path: Path
    title: str
    description: str
    channel_credential: str | None
    tags: list[str] = field(default_factory=list)
    thumbnail_path: Path | None = None


@dataclass(frozen=True)
class UploadResult:
    external_video_id: str
    url: str


class Uploader(ABC):
    @abstractmethod
    async def upload(self, request: UploadRequest) -> UploadResult:
        ...


def _raise_for_status(resp: httpx.Response, what: str) -> None:
    """Map YouTube/Google error responses onto the retry taxonomy."""
    if resp.status_code < 400:
        return
    text = resp.text[:300]
    if resp.status_code == 429:
        raise TransientError(f"{what}: rate limited ({text})", code="rate_limit")
    if resp.status_code == 403 and ("quotaExceeded" in text or "rateLimitExceeded" in text):
        raise TransientError(f"{what}: quota exceeded ({text})", code="quota_exceeded")
    if resp.status_code >= 500:
        raise TransientError(f"{what}: {resp.status_code} ({text})", code="service_unavailable")
    raise RuntimeError(f"{what} error {resp.status_code}: {text}")


def _tags(tags: list[str]) -> list[str]:
    cleaned = [t.lstrip("#").strip() for t in tags]
    return [t for t in cleaned if t][:30]


class YouTubeUploader(Uploader):
    """Resumable upload through the YouTube Data API v3."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.client_id = client_id or settings.yt_client_id
        self.client_secret = client_secret or settings.yt_client_secret
        self.privacy_status = settings.yt_privacy_status
        self.timeout = timeout
        self.transport = transport

    async def _access_token(self, client: httpx.AsyncClient, refresh_token: str) -> str:
        resp = await client.post(GOOGLE_TOKEN_URL, data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        })
        _raise_for_status(resp, "Token refresh")
        token = resp.json().get("access_token")
        if not token:
            raise ConfigurationError("Token refresh returned no access_token")
        return token

    async def upload(self, request: UploadRequest) -> UploadResult:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("YT_CLIENT_ID / YT_CLIENT_SECRET missing")
        if not request.channel_credential:
            raise ConfigurationError("Channel has no refresh token")
        if not request.video_path.exists():
            raise ConfigurationError(f"Video file missing: {request.video_path}")

        metadata = {
            "snippet": {
                "title": request.title[:100],
                "description": request.description[:5000],
                "tags": _tags(request.tags),
                "categoryId": SHORTS_CATEGORY_ID,
            },
            "status": {"privacyStatus": self.privacy_status, "selfDeclaredMadeForKids": False},
        }
        video_bytes = await asyncio.to_thread(request.video_path.read_bytes)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            token = await self._access_token(client, request.channel_credential)
            auth = {"Authorization": f"Bearer {token}"}

            init = await client.post(
                YT_UPLOAD_URL,
                params={"uploadType": "resumable", "part": "snippet,status"},
                json=metadata,
                headers={
                    **auth,
                    "X-Upload-Content-Type": "video/mp4",
                    "X-Upload-Content-Length": str(len(video_bytes)),
                },
            )
            _raise_for_status(init, "Upload init")
            session_url = init.headers.get("Location")
            if not session_url:
                raise TransientError("Upload init returned no session URL", code="service_unavailable")

            put = await client.put(session_url, content=video_bytes, headers={**auth, "Content-Type": "video/mp4"})
            _raise_for_status(put, "Upload")
            video_id = put.json().get("id")
            if not video_id:
                raise RuntimeError(f"Upload response without video id: {put.text[:200]}")

            if request.thumbnail_path and request.thumbnail_path.exists():
                thumb_bytes = await asyncio.to_thread(request.thumbnail_path.read_bytes)
                thumb = await client.post(
                    YT_THUMBNAIL_URL,
                    params={"videoId": video_id},
                    content=thumb_bytes,
                    headers={**auth, "Content-Type": "image/jpeg"},
                )
                if thumb.status_code >= 400:
                    logger.warning(f"[youtube] Thumbnail upload failed for {video_id}: {thumb.status_code}")

        logger.info(f"[youtube] Uploaded video {video_id}")
        return UploadResult(external_video_id=video_id, url=YT_WATCH_URL.format(video_id=video_id))
