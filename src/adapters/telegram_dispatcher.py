"""Telethon dispatcher.

Posts Markdown-formatted content through a Telethon client logged in with
the bot token. Shares the silent-hours behaviour of the Bot API dispatcher.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Union

from adapters.message_formatting import format_content
from adapters.telegram_bot_dispatcher import DEFAULT_SILENT_HOURS, is_silent_hour
from core.clock import utcnow
from core.models import Channel, Content


def resolve_target(target: str) -> Union[int, str]:
    """Numeric chat ids go to Telethon as ints, @usernames as strings."""

    stripped = target.strip()
    if stripped.lstrip("-").isdigit():
        return int(stripped)
    return stripped


class TelegramClientDispatcher:
    def __init__(
        self,
        client,
        silent_hours: Optional[tuple[int, int]] = DEFAULT_SILENT_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._silent_hours = silent_hours
        self._clock = clock

    async def send(self, channel: Channel, content: Content) -> str:
        message = await self._client.send_message(
            resolve_target(channel.target),
            format_content(content, mode="markdown"),
            parse_mode="md",
            link_preview=False,
            silent=is_silent_hour(self._clock(), self._silent_hours),
        )
        return str(message.id)
