"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from core.errors import ConfigurationError


@dataclass(frozen=True)
class TimeoutConfig:
    """Per-collaborator call timeouts in seconds."""

    rule_store: float = 10.0
    anchor_events: float = 10.0
    channel_directory: float = 10.0
    rate_limiter: float = 5.0
    content_generation: float = 60.0
    dispatch: float = 20.0
    approval_store: float = 10.0
    execution_log: float = 10.0


@dataclass(frozen=True)
class SchedulerConfig:
    """Tick cadence, dedup cooldown, and the rule worker pool size."""

    tick_interval_seconds: float = 60.0
    cooldown_minutes: int = 30
    max_concurrent_rules: int = 4
    timezone: str = "UTC"

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)


@dataclass(frozen=True)
class ExecutorConfig:
    """Per-fire settings for the rule executor."""

    channel_concurrency: int = 5
    fallback_content_type: str = "news"


@dataclass(frozen=True)
class RetentionConfig:
    """Execution log retention horizons."""

    interval_seconds: float = 3600.0
    max_age_days: int = 7
    failed_max_age_hours: int = 24

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.max_age_days)

    @property
    def failed_max_age(self) -> timedelta:
        return timedelta(hours=self.failed_max_age_hours)


@dataclass(frozen=True)
class EngineConfig:
    """Everything the scheduler, executor, and retention job need."""

    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)


# Longest fixed-time window a rule may use; the cooldown must cover both sides
# of it so a target cannot fire twice within one window.
MAX_FIXED_TIME_WINDOW_MINUTES = 15


def validate_engine_config(config: EngineConfig) -> None:
    """Reject settings that would let retention or dedup misbehave.

    Retention must never delete claims or records that are still inside an
    active cooldown window, so both horizons have to exceed the cooldown.
    """

    cooldown = config.scheduler.cooldown
    if config.scheduler.tick_interval_seconds <= 0:
        raise ConfigurationError("scheduler.tick_interval_seconds must be positive")
    if config.scheduler.max_concurrent_rules < 1:
        raise ConfigurationError("scheduler.max_concurrent_rules must be at least 1")
    if config.executor.channel_concurrency < 1:
        raise ConfigurationError("executor.channel_concurrency must be at least 1")
    if cooldown < timedelta(minutes=2 * MAX_FIXED_TIME_WINDOW_MINUTES):
        raise ConfigurationError(
            f"scheduler.cooldown_minutes must be at least {2 * MAX_FIXED_TIME_WINDOW_MINUTES}"
        )
    if config.retention.failed_max_age <= cooldown:
        raise ConfigurationError("retention.failed_max_age_hours must exceed the dedup cooldown")
    if config.retention.max_age <= cooldown:
        raise ConfigurationError("retention.max_age_days must exceed the dedup cooldown")
    if config.retention.interval_seconds <= 0:
        raise ConfigurationError("retention.interval_seconds must be positive")
