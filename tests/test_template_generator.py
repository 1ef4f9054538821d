from __future__ import annotations

import asyncio

import pytest

from adapters.template_generator import TemplateContentGenerator


def test_fills_anchor_fields() -> None:
    generator = TemplateContentGenerator()
    context = {
        "home_team": "Arsenal",
        "away_team": "Chelsea",
        "competition": "Premier League",
        "kickoff_time": "2024-06-10T12:00:00+00:00",
    }

    content = asyncio.run(generator.generate("betting", "en", context))

    assert content.title == "Betting tip: Arsenal vs Chelsea"
    assert "Premier League" in content.text
    assert content.content_type == "betting"


def test_missing_fields_render_placeholder() -> None:
    content = TemplateContentGenerator().render("live", "en", {"home_team": "Arsenal"})

    assert content.title == "Live: Arsenal vs TBD"


def test_unknown_language_falls_back_to_english() -> None:
    content = TemplateContentGenerator().render("polls", "he", {})

    assert content.language == "en"


def test_translated_template_is_used_when_present() -> None:
    content = TemplateContentGenerator().render("news", "he", {"trigger_reason": "x"})

    assert content.language == "he"


def test_unknown_content_type_raises() -> None:
    with pytest.raises(ValueError):
        asyncio.run(TemplateContentGenerator().generate("memes", "en", {}))
