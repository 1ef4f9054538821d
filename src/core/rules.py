"""Rule normalization and channel targeting (core domain)."""

from __future__ import annotations

from typing import Iterable, List

from core.models import AutomationRule, Channel


def build_rules(rules_config: Iterable[dict]) -> List[AutomationRule]:
    """Normalize rule configs into AutomationRule objects.

    Disabled rules are dropped here; the scheduler filters them a second time.
    Cadence validation happens per tick so one bad rule never hides the rest.
    """

    built: List[AutomationRule] = []
    for rule in rules_config:
        if not rule.get("enabled", True):
            continue
        rule_id = str(rule.get("id") or rule["name"])
        channel_ids = rule.get("channel_ids", []) or []
        built.append(
            AutomationRule(
                id=rule_id,
                name=str(rule.get("name", rule_id)),
                enabled=True,
                cadence_kind=str(rule.get("cadence", "")).strip().lower(),
                content_type=str(rule.get("content_type", "")).strip().lower(),
                channel_ids=tuple(str(channel_id) for channel_id in channel_ids),
                cadence_config=dict(rule.get("cadence_config", {}) or {}),
                requires_approval=bool(rule.get("requires_approval", False)),
            )
        )
    return built


def channels_for_rule(rule: AutomationRule, channels: Iterable[Channel]) -> List[Channel]:
    """Return the active, opted-in channels a rule targets.

    An empty target set means every opted-in channel.
    """

    eligible = [channel for channel in channels if channel.active and channel.automation_enabled]
    if not rule.channel_ids:
        return eligible
    wanted = set(rule.channel_ids)
    return [channel for channel in eligible if channel.id in wanted]
