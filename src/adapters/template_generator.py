"""Deterministic template content generator.

Fills per-type, per-language templates with fields from the generation
context (anchor metadata, trigger reason). Unknown content types raise so the
executor's fallback path is taken.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from core.models import Content

DEFAULT_LANGUAGE = "en"

# Each entry: (title, body). Missing fields render as "TBD".
TEMPLATES: dict[str, dict[str, tuple[str, str]]] = {
    "news": {
        "en": ("Football news", "Today's headlines are in. {trigger_reason}."),
        "he": ("חדשות כדורגל", "הכותרות של היום כאן. {trigger_reason}."),
    },
    "betting": {
        "en": (
            "Betting tip: {home_team} vs {away_team}",
            "{competition}: {home_team} host {away_team} at {kickoff_time}. Our pick is ready.",
        ),
    },
    "analysis": {
        "en": (
            "Match preview: {home_team} vs {away_team}",
            "{competition} preview ahead of kickoff at {kickoff_time}.",
        ),
    },
    "live": {
        "en": ("Live: {home_team} vs {away_team}", "Live update from {home_team} vs {away_team}."),
    },
    "polls": {
        "en": ("Poll", "Who wins {home_team} vs {away_team}?"),
    },
    "coupons": {
        "en": ("Coupon of the day", "Today's coupon is up. {trigger_reason}."),
    },
    "daily_summary": {
        "en": ("Daily summary", "Final whistle on {home_team} vs {away_team}. Here is the summary."),
    },
    "summary": {
        "en": ("Daily summary", "Here is how today went. {trigger_reason}."),
    },
}


class _Defaults(dict):
    def __missing__(self, key: str) -> str:
        return "TBD"


class TemplateContentGenerator:
    def __init__(self, templates: Optional[Mapping[str, Mapping[str, tuple[str, str]]]] = None) -> None:
        self._templates = templates if templates is not None else TEMPLATES

    def render(self, content_type: str, language: str, context: Mapping[str, Any]) -> Content:
        by_language = self._templates.get(content_type)
        if not by_language:
            raise ValueError(f"No template for content type {content_type!r}")
        resolved_language = language if language in by_language else DEFAULT_LANGUAGE
        if resolved_language not in by_language:
            raise ValueError(f"No {language!r} template for content type {content_type!r}")
        title, body = by_language[resolved_language]
        values = _Defaults({key: value for key, value in context.items() if value is not None})
        return Content(
            content_type=content_type,
            language=resolved_language,
            title=title.format_map(values),
            text=body.format_map(values),
        )

    async def generate(self, content_type: str, language: str, context: Mapping[str, Any]) -> Content:
        return self.render(content_type, language, context)
