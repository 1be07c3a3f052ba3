"""
Notification service — Telegram messages for job events and operator alerts.

Env:
  TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID

Sending is fire-and-forget: failures are logged and never reach the caller,
so a notification problem can never change a job's status.
Alerts (notify_error / notify_warn) are throttled: same title at most once
per 15 minutes.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx

from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)

THROTTLE_SEC = 15 * 60  # 15 minutes

EVENT_TEMPLATES = {
    "queued": "📋 <b>Job queued</b>\n\nChannel: {channel_id}\nNiche: {niche}\nType: {type}",
    "started": "▶️ <b>Job started</b>\n\nJob ID: {job_id}\nNiche: {niche}\nType: {type}",
    "uploading": "⬆️ <b>Uploading to YouTube</b>\n\nVideo ID: {video_id}\nTitle: {title}",
    "completed": "✅ <b>Video published</b>\n\nVideo ID: {video_id}\nYouTube ID: {youtube_id}\nTitle: {title}\n\nWatch: {url}",
    "failed": "❌ <b>Job failed</b>\n\nJob ID: {job_id}\nStage: {stage}\nError: {error}",
}


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return "-"


def format_event(channel_id: str, event: str, data: dict[str, Any]) -> str:
    template = EVENT_TEMPLATES.get(event)
    if template is None:
        return f"ℹ️ <b>Job event: {event}</b>\n\n<pre>{json.dumps(data, indent=2, default=str)[:1000]}</pre>"
    return template.format_map(_SafeDict(channel_id=channel_id, **data))


class Notifier:
    """Send notifications to the operator Telegram chat."""

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        *,
        throttle_sec: float = THROTTLE_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.bot_token = bot_token or settings.telegram_bot_token
        self.chat_id = chat_id or settings.telegram_chat_id
        self.enabled = bool(self.bot_token and self.chat_id)
        self.throttle_sec = throttle_sec
        self._throttle: dict[str, float] = {}
        self._pending: set[asyncio.Task] = set()
        self._transport = transport

        if not self.enabled:
            logger.warning("[notify] Telegram notifier disabled: missing bot_token or chat_id")

    async def send_message(self, text: str, parse_mode: str = "HTML") -> bool:
        """Send a text message to the configured chat. Never raises."""
        if not self.enabled:
            logger.debug("[notify] Telegram not configured, skipping")
            return False

        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                r = await client.post(url, json={
                    "chat_id": self.chat_id,
                    "text": text[:4000],
                    "parse_mode": parse_mode,
                    "disable_web_page_preview": True,
                })
                if r.status_code == 200:
                    return True
                logger.warning(f"[notify] Telegram API {r.status_code}: {r.text[:200]}")
        except Exception as e:
            logger.warning(f"[notify] Telegram send failed: {e}")
        return False

    async def notify(self, channel_id: str, event: str, data: dict[str, Any] | None = None) -> bool:
        """Send a job event message. Never raises."""
        try:
            text = format_event(channel_id, event, data or {})
        except Exception as e:
            logger.warning(f"[notify] Could not format {event} notification: {e}")
            return False
        sent = await self.send_message(text)
        if sent:
            logger.info(f"[notify] Notification sent ({event}, channel={channel_id})")
        return sent

    def dispatch(self, channel_id: str, event: str, data: dict[str, Any] | None = None) -> None:
        """Schedule ``notify`` without waiting for it."""
        task = asyncio.create_task(self.notify(channel_id, event, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for dispatched notifications (shutdown / tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _should_send(self, key: str) -> bool:
        now = time.monotonic()
        last = self._throttle.get(key)
        if last is not None and now - last < self.throttle_sec:
            return False
        self._throttle[key] = now
        return True

    async def notify_error(self, title: str, payload: Any = None) -> bool:
        """Send error-level alert (throttled by title)."""
        if not self._should_send(f"error:{title}"):
            logger.debug(f"[notify] throttled error: {title}")
            return False
        body = f"🔴 <b>{title}</b>"
        if payload:
            body += f"\n<pre>{str(payload)[:500]}</pre>"
        return await self.send_message(body)

    async def notify_warn(self, title: str, payload: Any = None) -> bool:
        """Send warning-level alert (throttled by title)."""
        if not self._should_send(f"warn:{title}"):
            logger.debug(f"[notify] throttled warn: {title}")
            return False
        body = f"🟡 <b>{title}</b>"
        if payload:
            body += f"\n<pre>{str(payload)[:500]}</pre>"
        return await self.send_message(body)


_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier
