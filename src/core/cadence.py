"""Cadence strategies (core domain).

Each cadence is a frozen dataclass whose ``evaluate`` is a pure function of
the local time and, for event-relative rules, the ranked anchor events. The
set of variants is closed: adding a cadence means adding a dataclass and a
parser to ``_PARSERS``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any, Callable, ClassVar, Iterable, List, Mapping, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.config import MAX_FIXED_TIME_WINDOW_MINUTES
from core.errors import ConfigurationError
from core.models import AnchorEvent, AutomationRule, CadenceKind, EventPeriod

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# Event-relative timing by content type, used when a rule omits its own offset.
EVENT_DEFAULTS: dict[str, dict[str, Any]] = {
    "betting": {"offset_minutes": -45},
    "analysis": {"offset_minutes": -120},
    "live": {"continuous": True, "duration_minutes": 120},
    "daily_summary": {"offset_minutes": 120},
}


@dataclass(frozen=True)
class Eligibility:
    """One reason for a rule to fire on this tick."""

    reason: str
    anchor: Optional[AnchorEvent] = None
    target: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        """What the eligibility is deduplicated on besides the rule itself."""

        if self.anchor is not None:
            return self.anchor.id
        return self.target


def _hour_in_range(hour: int, start: int, end: int) -> bool:
    # Inclusive range; start > end wraps past midnight (e.g. 22..2).
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


@dataclass(frozen=True)
class FixedTimeCadence:
    times: tuple[time, ...]
    window: timedelta = timedelta(minutes=5)

    needs_anchor_events: ClassVar[bool] = False

    def evaluate(self, now: datetime, anchors: Sequence[AnchorEvent] = ()) -> List[Eligibility]:
        # Compared in UTC so a repeated hour on a DST change matches only once.
        now_utc = now.astimezone(timezone.utc)
        for target in self.times:
            for day_offset in (-1, 0, 1):
                day = now.date() + timedelta(days=day_offset)
                target_at = datetime.combine(day, target, tzinfo=now.tzinfo)
                if abs(now_utc - target_at.astimezone(timezone.utc)) <= self.window:
                    label = target.strftime("%H:%M")
                    return [Eligibility(reason=f"scheduled time {label}", target=label)]
        return []


@dataclass(frozen=True)
class PeriodicSlotCadence:
    """Fires in the first minutes of every active hour."""

    active_start_hour: int = 6
    active_end_hour: int = 23
    slot_start_minute: int = 0
    slot_end_minute: int = 10

    needs_anchor_events: ClassVar[bool] = False

    def evaluate(self, now: datetime, anchors: Sequence[AnchorEvent] = ()) -> List[Eligibility]:
        if not _hour_in_range(now.hour, self.active_start_hour, self.active_end_hour):
            return []
        if not self.slot_start_minute <= now.minute <= self.slot_end_minute:
            return []
        return [Eligibility(reason=f"hourly slot {now.hour:02d}:{self.slot_start_minute:02d}")]


@dataclass(frozen=True)
class ContextWindowCadence:
    """Approximates "every two hours" with a minute window and an hour parity."""

    active_start_hour: int = 8
    active_end_hour: int = 20
    slot_start_minute: int = 30
    slot_end_minute: int = 40
    parity: str = "even"

    needs_anchor_events: ClassVar[bool] = False

    def evaluate(self, now: datetime, anchors: Sequence[AnchorEvent] = ()) -> List[Eligibility]:
        if not _hour_in_range(now.hour, self.active_start_hour, self.active_end_hour):
            return []
        if not self.slot_start_minute <= now.minute <= self.slot_end_minute:
            return []
        if (now.hour % 2 == 0) != (self.parity == "even"):
            return []
        return [Eligibility(reason=f"context window {now.hour:02d}:{now.minute:02d} ({self.parity} hour)")]


@dataclass(frozen=True)
class EventRelativeCadence:
    """Fires relative to ranked anchor events, once per matching anchor."""

    offset: timedelta = timedelta(0)
    continuous: bool = False
    duration: timedelta = timedelta(minutes=120)
    tolerance: timedelta = timedelta(minutes=5)
    top_k: int = 5
    min_importance: float = 0.0

    needs_anchor_events: ClassVar[bool] = True

    def evaluate(self, now: datetime, anchors: Sequence[AnchorEvent] = ()) -> List[Eligibility]:
        eligible: List[Eligibility] = []
        seen: set[str] = set()
        for anchor in anchors:
            if anchor.id in seen or anchor.importance < self.min_importance:
                continue
            if self.continuous:
                if anchor.starts_at <= now <= anchor.starts_at + self.duration:
                    seen.add(anchor.id)
                    eligible.append(Eligibility(reason=f"live during {anchor.label()}", anchor=anchor))
                continue
            target_at = anchor.starts_at + self.offset
            if abs(now - target_at) <= self.tolerance:
                seen.add(anchor.id)
                minutes = int(self.offset.total_seconds() // 60)
                eligible.append(
                    Eligibility(reason=f"{minutes:+d} min from {anchor.label()}", anchor=anchor)
                )
        return eligible


Cadence = Union[FixedTimeCadence, PeriodicSlotCadence, ContextWindowCadence, EventRelativeCadence]


def _int(config: Mapping[str, Any], key: str, default: int, low: int, high: int) -> int:
    raw = config.get(key, default)
    if isinstance(raw, bool):
        raise ConfigurationError(f"{key} must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc
    if not low <= value <= high:
        raise ConfigurationError(f"{key} must be between {low} and {high}, got {value}")
    return value


def _pair(config: Mapping[str, Any], key: str, default: tuple[int, int], high: int) -> tuple[int, int]:
    raw = config.get(key, list(default))
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise ConfigurationError(f"{key} must be a [start, end] pair")
    start = _int({key: raw[0]}, key, 0, 0, high)
    end = _int({key: raw[1]}, key, 0, 0, high)
    return start, end


def parse_hhmm(value: Any) -> time:
    """Parse an "HH:MM" target time."""

    match = _HHMM.match(str(value).strip())
    if not match:
        raise ConfigurationError(f"Invalid time {value!r}; expected HH:MM")
    return time(int(match.group(1)), int(match.group(2)))


def _parse_fixed_time(rule: AutomationRule) -> FixedTimeCadence:
    config = rule.cadence_config
    raw_times = config.get("times")
    if not raw_times or not isinstance(raw_times, (list, tuple)):
        raise ConfigurationError("fixed_time cadence requires a non-empty 'times' list", rule.id)
    window = _int(config, "window_minutes", 5, 0, MAX_FIXED_TIME_WINDOW_MINUTES)
    times = tuple(dict.fromkeys(parse_hhmm(value) for value in raw_times))
    return FixedTimeCadence(
        times=times,
        window=timedelta(minutes=window),
    )


def _parse_slot_window(rule: AutomationRule, hours: tuple[int, int], minutes: tuple[int, int]) -> tuple[int, int, int, int]:
    config = rule.cadence_config
    start_hour, end_hour = _pair(config, "active_hours", hours, 23)
    start_minute, end_minute = _pair(config, "slot_minutes", minutes, 59)
    if start_minute > end_minute:
        raise ConfigurationError("slot_minutes start must not exceed end", rule.id)
    return start_hour, end_hour, start_minute, end_minute


def _parse_periodic_slot(rule: AutomationRule) -> PeriodicSlotCadence:
    return PeriodicSlotCadence(*_parse_slot_window(rule, (6, 23), (0, 10)))


def _parse_context_window(rule: AutomationRule) -> ContextWindowCadence:
    parity = str(rule.cadence_config.get("parity", "even")).lower()
    if parity not in {"even", "odd"}:
        raise ConfigurationError(f"parity must be 'even' or 'odd', got {parity!r}", rule.id)
    return ContextWindowCadence(*_parse_slot_window(rule, (8, 20), (30, 40)), parity=parity)


def _parse_event_relative(rule: AutomationRule) -> EventRelativeCadence:
    config = dict(EVENT_DEFAULTS.get(rule.content_type, {}))
    config.update(rule.cadence_config)
    continuous = bool(config.get("continuous", False))
    if not continuous and "offset_minutes" not in config:
        raise ConfigurationError(
            f"event_relative cadence for {rule.content_type!r} needs offset_minutes or continuous",
            rule.id,
        )
    offset = _int(config, "offset_minutes", 0, -7 * 24 * 60, 7 * 24 * 60)
    duration = _int(config, "duration_minutes", 120, 1, 24 * 60)
    tolerance = _int(config, "tolerance_minutes", 5, 0, MAX_FIXED_TIME_WINDOW_MINUTES)
    top_k = _int(config, "top_k", 5, 1, 100)
    try:
        min_importance = float(config.get("min_importance", 0.0))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("min_importance must be a number", rule.id) from exc
    return EventRelativeCadence(
        offset=timedelta(minutes=offset),
        continuous=continuous,
        duration=timedelta(minutes=duration),
        tolerance=timedelta(minutes=tolerance),
        top_k=top_k,
        min_importance=min_importance,
    )


_PARSERS: dict[CadenceKind, Callable[[AutomationRule], Cadence]] = {
    CadenceKind.FIXED_TIME: _parse_fixed_time,
    CadenceKind.PERIODIC_SLOT: _parse_periodic_slot,
    CadenceKind.CONTEXT_WINDOW: _parse_context_window,
    CadenceKind.EVENT_RELATIVE: _parse_event_relative,
}


def parse_cadence(rule: AutomationRule) -> Cadence:
    """Build the cadence strategy for a rule or raise ConfigurationError."""

    try:
        kind = CadenceKind(rule.cadence_kind)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown cadence kind {rule.cadence_kind!r}", rule.id) from exc
    try:
        return _PARSERS[kind](rule)
    except ConfigurationError as exc:
        if exc.rule_id is None:
            raise ConfigurationError(str(exc), rule.id) from exc
        raise


def resolve_timezone(rule: AutomationRule, default: str) -> tzinfo:
    """Return the rule's timezone (cadence_config.timezone) or the default."""

    name = str(rule.cadence_config.get("timezone") or default)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone {name!r}", rule.id) from exc


def anchor_period(now: datetime, tz: tzinfo) -> EventPeriod:
    """Yesterday and today in local time; covers matches still live after midnight."""

    local = now.astimezone(tz)
    start_of_today = datetime.combine(local.date(), time(0), tzinfo=tz)
    return EventPeriod(
        start=start_of_today - timedelta(days=1),
        end=start_of_today + timedelta(days=1),
    )


def first_per_key(items: Iterable[Eligibility]) -> List[Eligibility]:
    """Keep the first eligibility per key (None = the rule itself)."""

    kept: List[Eligibility] = []
    seen: set[Optional[str]] = set()
    for item in items:
        key = item.key
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept
