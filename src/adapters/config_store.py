"""Rule store and channel directory backed by config.json.

The file is re-read on every call so edits to rules or channels apply on the
next tick without a restart.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Iterable, List, Optional

from core.models import AutomationRule, Channel
from core.rules import build_rules, channels_for_rule

LOGGER = logging.getLogger(__name__)


def read_config_file(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def build_channels(channels_config: Iterable[dict]) -> List[Channel]:
    """Normalize channel entries; entries without an id or target are skipped."""

    channels: List[Channel] = []
    for entry in channels_config:
        channel_id = entry.get("id")
        target = entry.get("target")
        if not channel_id or not target:
            LOGGER.warning("Skipping channel entry without id/target: %s", entry)
            continue
        channels.append(
            Channel(
                id=str(channel_id),
                name=str(entry.get("name", channel_id)),
                target=str(target),
                language=str(entry.get("language", "en")),
                active=bool(entry.get("active", True)),
                automation_enabled=bool(entry.get("automation_enabled", True)),
                rate_limit=dict(entry.get("rate_limit", {}) or {}),
            )
        )
    return channels


class ConfigRuleStore:
    def __init__(self, config_path: str) -> None:
        self._config_path = config_path

    def _load(self) -> List[AutomationRule]:
        return build_rules(read_config_file(self._config_path).get("rules", []))

    async def list_enabled_rules(self) -> List[AutomationRule]:
        return await asyncio.to_thread(self._load)


class ConfigChannelDirectory:
    def __init__(self, config_path: str) -> None:
        self._config_path = config_path

    def list_channels(self) -> List[Channel]:
        return build_channels(read_config_file(self._config_path).get("channels", []))

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        for channel in self.list_channels():
            if channel.id == channel_id:
                return channel
        return None

    async def list_active_channels_for_rule(self, rule: AutomationRule) -> List[Channel]:
        channels = await asyncio.to_thread(self.list_channels)
        return channels_for_rule(rule, channels)
