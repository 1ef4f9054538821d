"""Anti-spam rate limiter backed by the execution log.

Counts SENT records per channel to decide whether another message may go out:
- at most ``max_per_hour`` in the current clock hour
- at most ``max_per_day`` in the current day
- at most ``type_daily_limits[type]`` per content type per day
- at least ``min_gap_minutes`` since the last message
- nothing during quiet hours

Channels may override any of these with a ``rate_limit`` block in config.json.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Callable, Mapping, Optional, Protocol
from zoneinfo import ZoneInfo

from adapters.sqlite_storage import SQLiteExecutionLog
from core.clock import utcnow
from core.models import Channel, RateDecision

LOGGER = logging.getLogger(__name__)

DEFAULT_TYPE_DAILY_LIMITS: dict[str, int] = {
    "news": 3,
    "betting": 2,
    "analysis": 2,
    "live": 4,
    "polls": 1,
    "coupons": 3,
    "summary": 1,
    "memes": 1,
}


@dataclass(frozen=True)
class RateLimitConfig:
    max_per_hour: int = 2
    max_per_day: int = 12
    min_gap_minutes: int = 30
    quiet_hours: Optional[tuple[int, int]] = (0, 6)
    timezone: str = "UTC"
    type_daily_limits: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_TYPE_DAILY_LIMITS))

    def merged(self, overrides: Mapping[str, Any]) -> "RateLimitConfig":
        """Return a copy with the known keys from ``overrides`` applied."""

        if not overrides:
            return self
        changes: dict[str, Any] = {}
        for key in ("max_per_hour", "max_per_day", "min_gap_minutes"):
            if key in overrides:
                changes[key] = int(overrides[key])
        if "quiet_hours" in overrides:
            raw = overrides["quiet_hours"]
            changes["quiet_hours"] = (int(raw[0]), int(raw[1])) if raw else None
        if "timezone" in overrides:
            changes["timezone"] = str(overrides["timezone"])
        if "type_daily_limits" in overrides:
            limits = dict(self.type_daily_limits)
            limits.update({str(k): int(v) for k, v in overrides["type_daily_limits"].items()})
            changes["type_daily_limits"] = limits
        return dataclasses.replace(self, **changes)


class _ChannelLookup(Protocol):
    def get_channel(self, channel_id: str) -> Optional[Channel]:
        ...


def _in_quiet_hours(hour: int, quiet: tuple[int, int]) -> bool:
    # Half-open [start, end); start > end wraps past midnight.
    start, end = quiet
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


class LogBackedRateLimiter:
    def __init__(
        self,
        log: SQLiteExecutionLog,
        config: RateLimitConfig,
        channels: Optional[_ChannelLookup] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._log = log
        self._config = config
        self._channels = channels
        self._clock = clock

    def _config_for(self, channel_id: str) -> RateLimitConfig:
        if self._channels is None:
            return self._config
        channel = self._channels.get_channel(channel_id)
        if channel is None:
            return self._config
        return self._config.merged(channel.rate_limit)

    def check(self, content_type: str, channel_id: str) -> RateDecision:
        config = self._config_for(channel_id)
        now = self._clock().astimezone(ZoneInfo(config.timezone))

        if config.quiet_hours and _in_quiet_hours(now.hour, config.quiet_hours):
            end_hour = config.quiet_hours[1]
            resume = datetime.combine(now.date(), time(end_hour), tzinfo=now.tzinfo)
            if resume <= now:
                resume += timedelta(days=1)
            return RateDecision(False, f"quiet hours {config.quiet_hours[0]:02d}:00-{end_hour:02d}:00", resume - now)

        day_start = datetime.combine(now.date(), time(0), tzinfo=now.tzinfo)
        sent_today = self._log.count_sent(channel_id, day_start)
        if sent_today >= config.max_per_day:
            return RateDecision(
                False,
                f"daily limit reached: {sent_today}/{config.max_per_day}",
                day_start + timedelta(days=1) - now,
            )

        type_limit = config.type_daily_limits.get(content_type)
        if type_limit is not None:
            type_count = self._log.count_sent(channel_id, day_start, content_type)
            if type_count >= type_limit:
                return RateDecision(
                    False,
                    f"{content_type} daily limit reached: {type_count}/{type_limit}",
                    day_start + timedelta(days=1) - now,
                )

        hour_start = now.replace(minute=0, second=0, microsecond=0)
        sent_this_hour = self._log.count_sent(channel_id, hour_start)
        if sent_this_hour >= config.max_per_hour:
            return RateDecision(
                False,
                f"hourly limit reached: {sent_this_hour}/{config.max_per_hour}",
                hour_start + timedelta(hours=1) - now,
            )

        last_sent = self._log.last_sent_at(channel_id)
        if last_sent is not None:
            gap = now - last_sent
            min_gap = timedelta(minutes=config.min_gap_minutes)
            if gap < min_gap:
                minutes = gap.total_seconds() / 60
                return RateDecision(
                    False,
                    f"minimum gap not met: {minutes:.1f}min < {config.min_gap_minutes}min",
                    min_gap - gap,
                )

        return RateDecision(True)

    async def can_send(self, content_type: str, channel_id: str) -> RateDecision:
        decision = await asyncio.to_thread(self.check, content_type, channel_id)
        if not decision.allowed:
            LOGGER.debug("Rate limiter denied %s on %s: %s", content_type, channel_id, decision.reason)
        return decision
