"""Telegram Bot API dispatcher.

Posts generated content to channels through ``sendMessage`` with HTML parse
mode. Night-time posts are delivered silently.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
from datetime import datetime
from typing import Callable, Optional

from adapters.message_formatting import format_content
from core.clock import utcnow
from core.models import Channel, Content

# UTC hours during which posts are sent without a notification sound.
DEFAULT_SILENT_HOURS = (23, 6)


def is_silent_hour(now: datetime, silent_hours: Optional[tuple[int, int]]) -> bool:
    if not silent_hours:
        return False
    start, end = silent_hours
    hour = now.hour
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


class TelegramBotDispatcher:
    """Dispatcher adapter that sends messages via the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        silent_hours: Optional[tuple[int, int]] = DEFAULT_SILENT_HOURS,
        request_timeout: float = 15.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._bot_token = bot_token
        self._silent_hours = silent_hours
        self._request_timeout = request_timeout
        self._clock = clock

    def _endpoint(self) -> str:
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def build_payload(self, channel: Channel, content: Content) -> dict:
        return {
            "chat_id": channel.target,
            "text": format_content(content, mode="html"),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
            "disable_notification": is_silent_hour(self._clock(), self._silent_hours),
        }

    def _post(self, payload: dict) -> str:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._request_timeout) as response:
                body = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Bot API error {e.code}: {detail}") from e
        if not body.get("ok"):
            raise RuntimeError(f"Bot API error: {body.get('description', 'unknown error')}")
        return str(body["result"]["message_id"])

    async def send(self, channel: Channel, content: Content) -> str:
        """Send the formatted post and return the Telegram message id."""

        # urllib blocks, so the request runs in a worker thread.
        return await asyncio.to_thread(self._post, self.build_payload(channel, content))
