from __future__ import annotations

import asyncio
import json

from adapters.config_store import ConfigChannelDirectory, ConfigRuleStore, build_channels
from core.models import AutomationRule
from core.rules import build_rules


def _write_config(path, rules: list[dict], channels: list[dict]) -> None:
    path.write_text(json.dumps({"rules": rules, "channels": channels}), encoding="utf-8")


CHANNELS = [
    {"id": "en", "name": "English", "target": "@english"},
    {"id": "he", "name": "Hebrew", "target": "-100123", "language": "he"},
    {"id": "paused", "target": "@paused", "active": False},
    {"id": "manual", "target": "@manual", "automation_enabled": False},
    {"name": "no id"},
]


def test_build_rules_normalizes_and_skips_disabled() -> None:
    rules = build_rules(
        [
            {
                "id": "tips",
                "name": "Tips",
                "cadence": "Event_Relative",
                "content_type": "Betting",
                "channel_ids": ["en"],
                "requires_approval": True,
                "cadence_config": {"offset_minutes": -45},
            },
            {"name": "off", "enabled": False, "cadence": "fixed_time"},
            {"name": "nameless-id", "cadence": "periodic_slot", "content_type": "news"},
        ]
    )

    assert [rule.id for rule in rules] == ["tips", "nameless-id"]
    assert rules[0].cadence_kind == "event_relative"
    assert rules[0].content_type == "betting"
    assert rules[0].channel_ids == ("en",)
    assert rules[0].requires_approval is True
    assert rules[0].cadence_config == {"offset_minutes": -45}
    assert all(rule.enabled for rule in rules)


def test_build_channels_skips_incomplete_entries() -> None:
    channels = build_channels(CHANNELS)

    assert [channel.id for channel in channels] == ["en", "he", "paused", "manual"]
    assert channels[1].language == "he"


def test_rule_store_rereads_the_file(tmp_path) -> None:
    path = tmp_path / "config.json"
    _write_config(path, [{"id": "a", "cadence": "periodic_slot", "content_type": "news"}], CHANNELS)
    store = ConfigRuleStore(str(path))

    assert [rule.id for rule in asyncio.run(store.list_enabled_rules())] == ["a"]

    _write_config(path, [{"id": "b", "cadence": "periodic_slot", "content_type": "news"}], CHANNELS)
    assert [rule.id for rule in asyncio.run(store.list_enabled_rules())] == ["b"]


def test_empty_target_set_means_every_opted_in_channel(tmp_path) -> None:
    path = tmp_path / "config.json"
    _write_config(path, [], CHANNELS)
    directory = ConfigChannelDirectory(str(path))
    everywhere = AutomationRule(
        id="r1", name="r1", enabled=True, cadence_kind="periodic_slot", content_type="news"
    )
    only_hebrew = AutomationRule(
        id="r2",
        name="r2",
        enabled=True,
        cadence_kind="periodic_slot",
        content_type="news",
        channel_ids=("he", "paused"),
    )

    assert [c.id for c in asyncio.run(directory.list_active_channels_for_rule(everywhere))] == ["en", "he"]
    assert [c.id for c in asyncio.run(directory.list_active_channels_for_rule(only_hebrew))] == ["he"]
    assert directory.get_channel("manual").automation_enabled is False
    assert directory.get_channel("missing") is None
