import json
import threading
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from viral_machine.errors import ConfigurationError, TransientError
from viral_machine.integrations.youtube_uploader import UploadRequest, YouTubeUploader
from viral_machine.services.content_generator import OpenAIContentGenerator
from viral_machine.services.notify import Notifier, format_event


def test_format_event_fills_missing_fields():
    text = format_event("UC_a", "failed", {"job_id": "j1", "error": "boom"})
    assert "j1" in text and "boom" in text
    assert "Stage: -" in text
    assert "Job event: custom" in format_event("UC_a", "custom", {"x": 1})


async def test_notifier_disabled_without_credentials():
    sent = []
    notifier = Notifier(transport=httpx.MockTransport(lambda r: sent.append(r) or httpx.Response(200)))
    assert notifier.enabled is False
    assert await notifier.notify("UC_a", "completed", {}) is False
    assert sent == []


async def test_notifier_posts_to_telegram():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    notifier = Notifier("token", "42", transport=httpx.MockTransport(handler))
    ok = await notifier.notify("UC_a", "completed", {"video_id": "v1", "youtube_id": "yt1", "title": "T", "url": "u"})

    assert ok is True
    assert requests[0].url.path == "/bottoken/sendMessage"
    body = json.loads(requests[0].content)
    assert body["chat_id"] == "42"
    assert "Video published" in body["text"]


async def test_notifier_never_raises():
    def handler(request):
        raise httpx.ConnectError("telegram down")

    notifier = Notifier("token", "42", transport=httpx.MockTransport(handler))
    assert await notifier.notify("UC_a", "started", {"job_id": "j"}) is False

    notifier.dispatch("UC_a", "started", {"job_id": "j"})
    await notifier.drain()


async def test_alerts_are_throttled():
    calls = []
    notifier = Notifier("token", "42", transport=httpx.MockTransport(lambda r: calls.append(r) or httpx.Response(200)))

    assert await notifier.notify_error("Scheduler failed") is True
    assert await notifier.notify_error("Scheduler failed") is False
    assert await notifier.notify_warn("Scheduler failed") is True
    assert len(calls) == 2


def youtube_handler(calls, init_status=200):
    def handler(request):
        calls.append((request.method, request.url.host, request.url.path))
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(200, json={"access_token": "access"})
        if request.method == "POST" and request.url.path == "/upload/youtube/v3/videos":
            if init_status != 200:
                return httpx.Response(init_status, text="rateLimitExceeded")
            return httpx.Response(200, headers={"Location": "https://www.googleapis.com/upload/session/abc"})
        if request.method == "PUT":
            assert request.headers["Authorization"] == "Bearer access"
            return httpx.Response(200, json={"id": "vid42"})
        if request.url.path.endswith("/thumbnails/set"):
            return httpx.Response(200, json={})
        return httpx.Response(404)

    return handler


@pytest.fixture
def upload_request(tmp_path):
    video = tmp_path / "final.mp4"
    video.write_bytes(b"\x00" * 64)
    thumb = tmp_path / "thumbnail.jpg"
    thumb.write_bytes(b"jpg")
    return UploadRequest(
        video_path=video,
        title="Title",
        description="Desc",
        channel_credential="refresh",
        tags=["#motivation", "#", "success"],
        thumbnail_path=thumb,
    )


async def test_youtube_upload_flow(upload_request):
    calls = []
    uploader = YouTubeUploader("cid", "secret", transport=httpx.MockTransport(youtube_handler(calls)))

    result = await uploader.upload(upload_request)

    assert result.external_video_id == "vid42"
    assert result.url.endswith("vid42")
    assert [c[0] for c in calls] == ["POST", "POST", "PUT", "POST"]


async def test_youtube_reads_files_off_the_event_loop(upload_request):
    loop_thread = threading.get_ident()
    readers = []
    original = Path.read_bytes

    def read_bytes(self):
        readers.append(threading.get_ident())
        return original(self)

    uploader = YouTubeUploader("cid", "secret", transport=httpx.MockTransport(youtube_handler([])))
    with patch.object(Path, "read_bytes", read_bytes):
        await uploader.upload(upload_request)

    assert len(readers) == 2
    assert loop_thread not in readers


async def test_youtube_rate_limit_is_transient(upload_request):
    uploader = YouTubeUploader("cid", "secret", transport=httpx.MockTransport(youtube_handler([], init_status=429)))
    with pytest.raises(TransientError):
        await uploader.upload(upload_request)


async def test_youtube_requires_credentials(upload_request):
    upload_request.channel_credential = None
    with pytest.raises(ConfigurationError):
        await YouTubeUploader("cid", "secret").upload(upload_request)


def openai_response(content, status=200):
    body = {"choices": [{"message": {"content": json.dumps(content)}}]}
    return httpx.MockTransport(lambda r: httpx.Response(status, json=body))


async def test_openai_generator_parses_json():
    generator = OpenAIContentGenerator(
        "sk-test",
        transport=openai_response({
            "topic": "Compounding",
            "script": "Small wins add up.",
            "titles": ["Small Wins", ""],
            "description": "d",
            "hashtags": ["#money"],
        }),
    )

    content = await generator.generate("Finance")

    assert content.titles == ["Small Wins"]
    assert content.script == "Small wins add up."
    assert content.niche == "Finance"
    assert content.generated_by == generator.model


async def test_openai_server_error_is_transient():
    generator = OpenAIContentGenerator("sk-test", transport=openai_response({}, status=503))
    with pytest.raises(TransientError):
        await generator.generate("Finance")


async def test_openai_without_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        await OpenAIContentGenerator().generate("Finance")
