"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional


class CadenceKind(str, Enum):
    FIXED_TIME = "fixed_time"
    PERIODIC_SLOT = "periodic_slot"
    CONTEXT_WINDOW = "context_window"
    EVENT_RELATIVE = "event_relative"


class Outcome(str, Enum):
    """Terminal outcome of one (rule, channel) attempt."""

    SENT = "SENT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SEND_FAILED = "SEND_FAILED"
    GEN_FAILED = "GEN_FAILED"
    SKIPPED_RATE_LIMITED = "SKIPPED_RATE_LIMITED"


# Outcomes that count as a successful fire for dedup purposes.
SUCCESS_OUTCOMES = frozenset({Outcome.SENT, Outcome.PENDING_APPROVAL})

# Outcomes treated as noise by retention (short horizon).
NOISE_OUTCOMES = frozenset({Outcome.SEND_FAILED, Outcome.GEN_FAILED, Outcome.SKIPPED_RATE_LIMITED})


@dataclass(frozen=True)
class AutomationRule:
    """Persisted rule configuration; the core only reads it."""

    id: str
    name: str
    enabled: bool
    cadence_kind: str
    content_type: str
    channel_ids: tuple[str, ...] = ()
    cadence_config: Mapping[str, Any] = field(default_factory=dict)
    requires_approval: bool = False


@dataclass(frozen=True)
class AnchorEvent:
    """Externally sourced, time-bound event (for example an upcoming match)."""

    id: str
    starts_at: datetime
    importance: float
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def label(self) -> str:
        home = self.metadata.get("home_team")
        away = self.metadata.get("away_team")
        if home and away:
            return f"{home} vs {away}"
        return self.id


@dataclass(frozen=True)
class EventPeriod:
    """Half-open [start, end) window used to query anchor events."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class Channel:
    """Delivery channel as seen by the core (read-only)."""

    id: str
    name: str
    target: str
    language: str = "en"
    active: bool = True
    automation_enabled: bool = True
    rate_limit: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Content:
    """Generated content ready for approval or dispatch."""

    content_type: str
    language: str
    text: str
    title: Optional[str] = None
    requested_type: Optional[str] = None
    fallback_used: bool = False


@dataclass(frozen=True)
class RateDecision:
    """Answer of the rate limiter for one channel and content type."""

    allowed: bool
    reason: str = ""
    wait: Optional[timedelta] = None


@dataclass(frozen=True)
class ExecutionRecord:
    """Persisted result of one (rule, channel) fire attempt."""

    rule_id: str
    channel_id: str
    dedup_key: str
    content_type: str
    fired_at: datetime
    completed_at: datetime
    outcome: Outcome
    duration_ms: int
    anchor_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    fallback_used: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES


@dataclass(frozen=True)
class PruneResult:
    """Rows removed by one retention pass."""

    expired: int = 0
    noise: int = 0
    claims: int = 0

    @property
    def total_records(self) -> int:
        return self.expired + self.noise
