from __future__ import annotations

from typing import Optional

import pytest

from adapters.message_formatting import TELEGRAM_MESSAGE_LIMIT, format_content
from core.models import Content


def _content(text: str, title: Optional[str] = None) -> Content:
    return Content(content_type="news", language="en", text=text, title=title)


def test_html_escapes_title_and_body() -> None:
    message = format_content(_content("Spurs <3 & fans", title="A&B"), mode="html")

    assert message == "<b>A&amp;B</b>\n\nSpurs &lt;3 &amp; fans"


def test_markdown_escapes_markup_characters() -> None:
    message = format_content(_content("odds *2.5* [boost]", title="Tip_1"), mode="markdown")

    assert message.startswith("**Tip\\_1**\n\n")
    assert "\\*2.5\\*" in message
    assert "\\[boost]" in message


def test_long_html_body_is_truncated_to_telegram_limit() -> None:
    message = format_content(_content("<" * 5000, title="Long"), mode="html")

    assert len(message) <= TELEGRAM_MESSAGE_LIMIT
    assert message.endswith("…")
    # Entities are never cut in half.
    assert message[:-1].endswith("&lt;")


def test_long_markdown_body_is_truncated() -> None:
    message = format_content(_content("x" * 5000), mode="markdown")

    assert len(message) == TELEGRAM_MESSAGE_LIMIT
    assert message.endswith("…")


def test_short_text_is_untouched() -> None:
    assert format_content(_content("hello"), mode="markdown") == "hello"


def test_unsupported_mode_raises() -> None:
    with pytest.raises(ValueError):
        format_content(_content("hello"), mode="bbcode")
