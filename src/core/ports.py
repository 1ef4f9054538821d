"""Ports (interfaces) used by the automation core.

Ports define the minimal contracts for storage, content, and delivery
adapters so that the core can be reused with different backends. Network
collaborators are async; the execution log is a blocking store that the core
calls through a worker thread.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Protocol

from core.models import (
    AnchorEvent,
    AutomationRule,
    Channel,
    Content,
    EventPeriod,
    ExecutionRecord,
    PruneResult,
    RateDecision,
)


class RuleStore(Protocol):
    async def list_enabled_rules(self) -> list[AutomationRule]:
        ...


class ExecutionLogStore(Protocol):
    """Durable execution log; the single shared mutable state of the engine."""

    def try_claim(self, dedup_key: str, window: timedelta, now: datetime) -> bool:
        """Atomically claim a dedup key unless a claim newer than now - window exists."""
        ...

    def release_claim(self, dedup_key: str, claimed_at: datetime) -> None:
        ...

    def record(self, record: ExecutionRecord) -> None:
        ...

    def prune(self, older_than: datetime, non_terminal_older_than: datetime) -> PruneResult:
        ...


class ChannelDirectory(Protocol):
    async def list_active_channels_for_rule(self, rule: AutomationRule) -> list[Channel]:
        ...


class AnchorEventSource(Protocol):
    async def top_events(self, content_type: str, period: EventPeriod, limit: int) -> list[AnchorEvent]:
        ...


class ContentGenerator(Protocol):
    async def generate(
        self, content_type: str, language: str, context: Mapping[str, Any]
    ) -> Content:
        ...


class RateLimiter(Protocol):
    async def can_send(self, content_type: str, channel_id: str) -> RateDecision:
        ...


class Dispatcher(Protocol):
    async def send(self, channel: Channel, content: Content) -> str:
        """Deliver content and return the platform message id."""
        ...


class ApprovalStore(Protocol):
    async def create_pending(
        self, rule: AutomationRule, content: Content, channel: Channel
    ) -> Optional[str]:
        ...
