from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from core.cadence import (
    ContextWindowCadence,
    Eligibility,
    EventRelativeCadence,
    FixedTimeCadence,
    PeriodicSlotCadence,
    anchor_period,
    first_per_key,
    parse_cadence,
    resolve_timezone,
)
from core.errors import ConfigurationError
from core.models import AnchorEvent, AutomationRule


def _rule(kind: str, content_type: str = "news", **cadence_config) -> AutomationRule:
    return AutomationRule(
        id="r1",
        name="rule one",
        enabled=True,
        cadence_kind=kind,
        content_type=content_type,
        cadence_config=cadence_config,
    )


def _at(hour: int, minute: int, day: int = 10) -> datetime:
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


def _anchor(anchor_id: str, starts_at: datetime, importance: float = 50.0) -> AnchorEvent:
    return AnchorEvent(
        id=anchor_id,
        starts_at=starts_at,
        importance=importance,
        metadata={"home_team": "Home", "away_team": "Away"},
    )


def test_fixed_time_is_eligible_inside_window() -> None:
    cadence = parse_cadence(_rule("fixed_time", times=["09:00"], window_minutes=5))

    assert cadence.evaluate(_at(9, 3)) == [Eligibility(reason="scheduled time 09:00", target="09:00")]
    assert cadence.evaluate(_at(8, 55))
    assert cadence.evaluate(_at(9, 6)) == []
    assert cadence.evaluate(_at(8, 54)) == []


def test_fixed_time_window_wraps_midnight() -> None:
    cadence = parse_cadence(_rule("fixed_time", times=["23:58"], window_minutes=5))

    assert cadence.evaluate(_at(0, 2, day=11))
    assert cadence.evaluate(_at(0, 4, day=11)) == []


def test_fixed_time_first_target_wins() -> None:
    cadence = parse_cadence(_rule("fixed_time", times=["09:00", "09:04"]))

    assert isinstance(cadence, FixedTimeCadence)

    result = cadence.evaluate(_at(9, 2))

    assert len(result) == 1
    assert result[0].reason == "scheduled time 09:00"
    assert result[0].key == "09:00"


def test_fixed_time_duplicate_targets_collapse() -> None:
    cadence = parse_cadence(_rule("fixed_time", times=["09:00", "9:00", "18:30"]))

    assert [target.strftime("%H:%M") for target in cadence.times] == ["09:00", "18:30"]


def test_fixed_time_matches_repeated_dst_hour_once() -> None:
    cadence = parse_cadence(_rule("fixed_time", times=["01:30"], window_minutes=5))
    new_york = ZoneInfo("America/New_York")
    # 2024-11-03 01:30 happens at 05:30 UTC (EDT) and again at 06:30 UTC (EST).
    first = datetime(2024, 11, 3, 5, 30, tzinfo=timezone.utc).astimezone(new_york)
    repeated = datetime(2024, 11, 3, 6, 30, tzinfo=timezone.utc).astimezone(new_york)

    assert cadence.evaluate(first)
    assert cadence.evaluate(repeated) == []


def test_periodic_slot_defaults() -> None:
    cadence = parse_cadence(_rule("periodic_slot"))

    assert isinstance(cadence, PeriodicSlotCadence)
    assert cadence.evaluate(_at(10, 5))
    assert cadence.evaluate(_at(23, 0))
    assert cadence.evaluate(_at(10, 11)) == []
    assert cadence.evaluate(_at(5, 5)) == []


def test_periodic_slot_active_hours_wrap_midnight() -> None:
    cadence = parse_cadence(_rule("periodic_slot", active_hours=[22, 2], slot_minutes=[0, 10]))

    assert cadence.evaluate(_at(1, 5))
    assert cadence.evaluate(_at(22, 0))
    assert cadence.evaluate(_at(3, 5)) == []


def test_context_window_respects_parity() -> None:
    cadence = parse_cadence(_rule("context_window"))

    assert isinstance(cadence, ContextWindowCadence)
    assert cadence.evaluate(_at(10, 35))
    assert cadence.evaluate(_at(11, 35)) == []
    assert cadence.evaluate(_at(10, 41)) == []

    odd = parse_cadence(_rule("context_window", parity="odd"))
    assert odd.evaluate(_at(11, 35))


def test_event_relative_uses_content_type_default_offset() -> None:
    cadence = parse_cadence(_rule("event_relative", content_type="betting"))
    kickoff = _at(12, 0)
    anchors = [_anchor("m1", kickoff), _anchor("m2", kickoff + timedelta(hours=3))]

    result = cadence.evaluate(_at(11, 15), anchors)

    assert [item.anchor.id for item in result] == ["m1"]
    assert "Home vs Away" in result[0].reason
    assert cadence.evaluate(_at(11, 25), anchors) == []


def test_event_relative_yields_one_eligibility_per_anchor() -> None:
    cadence = EventRelativeCadence(offset=timedelta(minutes=-120))
    kickoff = _at(20, 0)
    anchors = [_anchor("m1", kickoff), _anchor("m2", kickoff), _anchor("m1", kickoff)]

    result = cadence.evaluate(_at(18, 0), anchors)

    assert [item.anchor.id for item in result] == ["m1", "m2"]


def test_event_relative_continuous_live_window() -> None:
    cadence = parse_cadence(_rule("event_relative", content_type="live"))
    anchors = [_anchor("m1", _at(15, 0))]

    assert cadence.continuous
    assert cadence.evaluate(_at(15, 30), anchors)
    assert cadence.evaluate(_at(17, 0), anchors)
    assert cadence.evaluate(_at(17, 1), anchors) == []
    assert cadence.evaluate(_at(14, 59), anchors) == []


def test_event_relative_min_importance_filters_anchors() -> None:
    cadence = parse_cadence(
        _rule("event_relative", content_type="analysis", min_importance=70)
    )
    kickoff = _at(20, 0)
    anchors = [_anchor("low", kickoff, importance=40), _anchor("high", kickoff, importance=90)]

    result = cadence.evaluate(_at(18, 0), anchors)

    assert [item.anchor.id for item in result] == ["high"]


def test_event_relative_zero_anchors_is_not_eligible() -> None:
    cadence = parse_cadence(_rule("event_relative", content_type="betting"))

    assert cadence.evaluate(_at(11, 15), []) == []


def test_parse_errors_carry_rule_id() -> None:
    bad_rules = [
        _rule("hourly"),
        _rule("fixed_time"),
        _rule("fixed_time", times=["25:00"]),
        _rule("fixed_time", times=["09:00"], window_minutes=30),
        _rule("periodic_slot", slot_minutes=[20, 10]),
        _rule("context_window", parity="sometimes"),
        _rule("event_relative", content_type="news"),
        _rule("event_relative", content_type="news", offset_minutes="soon"),
    ]

    for rule in bad_rules:
        with pytest.raises(ConfigurationError) as excinfo:
            parse_cadence(rule)
        assert excinfo.value.rule_id == "r1"


def test_resolve_timezone() -> None:
    assert resolve_timezone(_rule("periodic_slot"), "UTC") == ZoneInfo("UTC")
    assert resolve_timezone(_rule("periodic_slot", timezone="Asia/Jerusalem"), "UTC") == ZoneInfo(
        "Asia/Jerusalem"
    )
    with pytest.raises(ConfigurationError):
        resolve_timezone(_rule("periodic_slot", timezone="Mars/Olympus"), "UTC")


def test_anchor_period_covers_yesterday_and_today() -> None:
    period = anchor_period(_at(1, 30), ZoneInfo("UTC"))

    assert period.start == datetime(2024, 6, 9, tzinfo=ZoneInfo("UTC"))
    assert period.end == datetime(2024, 6, 11, tzinfo=ZoneInfo("UTC"))


def test_first_per_key_keeps_first_eligibility_per_anchor_and_target() -> None:
    anchor = _anchor("m1", _at(12, 0))
    items = [
        Eligibility("a"),
        Eligibility("b"),
        Eligibility("c", anchor=anchor),
        Eligibility("d", anchor=anchor),
        Eligibility("e", target="09:00"),
        Eligibility("f", target="09:00"),
    ]

    assert [item.reason for item in first_per_key(items)] == ["a", "c", "e"]
