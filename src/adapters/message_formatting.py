"""Shared message formatting helpers.

Keeping formatting here prevents drift between the Bot API and Telethon
dispatchers and keeps posts consistent regardless of delivery path.
"""

from __future__ import annotations

import html

from core.models import Content

# Telegram rejects message text longer than this.
TELEGRAM_MESSAGE_LIMIT = 4096

_ELLIPSIS = "…"


def _escape_markdown(value: str) -> str:
    for ch in r"*[`_":
        value = value.replace(ch, f"\\{ch}")
    return value


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(_ELLIPSIS)].rstrip() + _ELLIPSIS


def _format_markdown(content: Content, limit: int) -> str:
    """Markdown body used by the Telethon dispatcher."""

    body = _escape_markdown(content.text.strip())
    if not content.title:
        return _truncate(body, limit)
    heading = f"**{_escape_markdown(content.title.strip())}**\n\n"
    return heading + _truncate(body, limit - len(heading))


def _format_html(content: Content, limit: int) -> str:
    """HTML body used by the Bot API dispatcher.

    The body is truncated before escaping so an entity is never cut in half.
    """

    heading = ""
    if content.title:
        heading = f"<b>{html.escape(content.title.strip())}</b>\n\n"
    budget = limit - len(heading)
    text = content.text.strip()
    body = html.escape(text)
    while len(body) > budget and len(text) > 2:
        text = _truncate(text, max(len(text) * budget // len(body), 2))
        body = html.escape(text)
    return heading + body


def format_content(content: Content, mode: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> str:
    """Return the post text formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(content, limit)
    if mode == "html":
        return _format_html(content, limit)
    raise ValueError(f"Unsupported message format: {mode}")
