"""Rule executor: performs one fire of a rule across its channels.

This module is integration-agnostic. It only relies on ports for channels,
rate limiting, content, approvals, delivery, and the execution log.

Per channel the order is strict:
1) Ask the rate limiter; a denial is recorded, never silent
2) Generate content, with exactly one fallback content type on failure
3) Park the content for approval, or dispatch it
4) Record exactly one execution record for the channel
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from core.attempt import AttemptState, ChannelAttempt
from core.clock import utcnow
from core.config import ExecutorConfig, TimeoutConfig
from core.errors import TransientCollaboratorError
from core.models import AnchorEvent, AutomationRule, Channel, Content, ExecutionRecord
from core.ports import (
    ApprovalStore,
    ChannelDirectory,
    ContentGenerator,
    Dispatcher,
    ExecutionLogStore,
    RateLimiter,
)
from core.timeouts import call_with_timeout, run_blocking

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FireRequest:
    """A rule (optionally for one anchor) that passed cadence and dedup."""

    rule: AutomationRule
    dedup_key: str
    reason: str
    fired_at: datetime
    anchor: Optional[AnchorEvent] = None


@dataclass(frozen=True)
class FireReport:
    request: FireRequest
    records: tuple[ExecutionRecord, ...] = ()

    @property
    def succeeded(self) -> bool:
        return any(record.succeeded for record in self.records)


def build_generation_context(request: FireRequest) -> dict[str, Any]:
    """Context handed to the content generator for one fire."""

    context: dict[str, Any] = {
        "rule_id": request.rule.id,
        "rule_name": request.rule.name,
        "trigger_reason": request.reason,
    }
    anchor = request.anchor
    if anchor is not None:
        context.update(anchor.metadata)
        context["anchor_id"] = anchor.id
        context["kickoff_time"] = anchor.starts_at.isoformat()
        context["importance"] = anchor.importance
    return context


class RuleExecutor:
    """Runs the per-channel pipeline with bounded parallelism."""

    def __init__(
        self,
        *,
        channels: ChannelDirectory,
        generator: ContentGenerator,
        rate_limiter: RateLimiter,
        dispatcher: Dispatcher,
        approvals: ApprovalStore,
        log_store: ExecutionLogStore,
        config: ExecutorConfig,
        timeouts: TimeoutConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._channels = channels
        self._generator = generator
        self._limiter = rate_limiter
        self._dispatcher = dispatcher
        self._approvals = approvals
        self._log = log_store
        self._config = config
        self._timeouts = timeouts
        self._clock = clock

    async def fire(self, request: FireRequest) -> FireReport:
        rule = request.rule
        try:
            channels = await call_with_timeout(
                self._channels.list_active_channels_for_rule(rule),
                self._timeouts.channel_directory,
                "channel directory",
            )
        except TransientCollaboratorError as exc:
            LOGGER.warning("Could not resolve channels for rule %s: %s", rule.id, exc)
            return FireReport(request=request)

        targets = [channel for channel in channels if channel.active and channel.automation_enabled]
        if not targets:
            LOGGER.info("No active channels for rule %s", rule.name)
            return FireReport(request=request)

        # Semaphore is created per fire so it always belongs to the running loop.
        slots = asyncio.Semaphore(self._config.channel_concurrency)

        async def _guarded(channel: Channel) -> ExecutionRecord:
            async with slots:
                attempt = ChannelAttempt(rule, channel, request.dedup_key, request.fired_at, request.anchor)
                try:
                    return await self._attempt(request, attempt)
                except Exception as exc:
                    LOGGER.exception("Unexpected error for rule %s on %s", rule.id, channel.id)
                    attempt.abort(f"{type(exc).__name__}: {exc}")
                    return await self._finish(attempt)

        records = await asyncio.gather(*(_guarded(channel) for channel in targets))
        return FireReport(request=request, records=tuple(records))

    async def _attempt(self, request: FireRequest, attempt: ChannelAttempt) -> ExecutionRecord:
        rule = request.rule
        channel = attempt.channel

        try:
            decision = await call_with_timeout(
                self._limiter.can_send(rule.content_type, channel.id),
                self._timeouts.rate_limiter,
                "rate limiter",
            )
            allowed, reason = decision.allowed, decision.reason
        except TransientCollaboratorError as exc:
            allowed, reason = False, str(exc)
        if not allowed:
            LOGGER.info("Rate limited %s on %s: %s", rule.content_type, channel.id, reason)
            attempt.advance(AttemptState.SKIPPED_RATE_LIMITED, error=reason or "rate limited")
            return await self._finish(attempt)

        attempt.advance(AttemptState.GENERATING)
        content = await self._generate(request, channel, attempt)
        if content is None:
            return await self._finish(attempt)
        attempt.advance(AttemptState.GENERATED)

        if rule.requires_approval:
            attempt.advance(AttemptState.AWAITING_APPROVAL)
            try:
                await call_with_timeout(
                    self._approvals.create_pending(rule, content, channel),
                    self._timeouts.approval_store,
                    "approval store",
                )
                attempt.advance(AttemptState.PENDING_APPROVAL)
            except TransientCollaboratorError as exc:
                attempt.advance(AttemptState.SEND_FAILED, error=str(exc))
            return await self._finish(attempt)

        attempt.advance(AttemptState.DISPATCHING)
        try:
            message_id = await call_with_timeout(
                self._dispatcher.send(channel, content),
                self._timeouts.dispatch,
                "dispatcher",
            )
        except TransientCollaboratorError as exc:
            # No retry here; the next eligible tick retries once dedup allows it.
            LOGGER.warning("Dispatch failed for rule %s on %s: %s", rule.id, channel.id, exc)
            attempt.advance(AttemptState.SEND_FAILED, error=str(exc))
        else:
            attempt.message_id = str(message_id) if message_id is not None else None
            attempt.advance(AttemptState.SENT)
        return await self._finish(attempt)

    async def _generate_one(self, content_type: str, language: str, context: dict[str, Any], step: str) -> Content:
        content = await call_with_timeout(
            self._generator.generate(content_type, language, context),
            self._timeouts.content_generation,
            step,
        )
        if not isinstance(content, Content):
            raise TransientCollaboratorError(step, f"generator returned {type(content).__name__}")
        return content

    async def _generate(
        self, request: FireRequest, channel: Channel, attempt: ChannelAttempt
    ) -> Optional[Content]:
        context = build_generation_context(request)
        content_type = request.rule.content_type
        try:
            return await self._generate_one(content_type, channel.language, context, "content generation")
        except TransientCollaboratorError as exc:
            primary_error = str(exc)

        fallback_type = self._config.fallback_content_type
        LOGGER.warning(
            "Generation of %s failed for %s, falling back to %s: %s",
            content_type,
            channel.id,
            fallback_type,
            primary_error,
        )
        try:
            content = await self._generate_one(
                fallback_type, channel.language, context, "fallback content generation"
            )
        except TransientCollaboratorError as exc:
            attempt.advance(AttemptState.GEN_FAILED, error=f"{primary_error}; {exc}")
            return None

        attempt.fallback_used = True
        attempt.content_type = content.content_type
        return dataclasses.replace(content, requested_type=content_type, fallback_used=True)

    async def _finish(self, attempt: ChannelAttempt) -> ExecutionRecord:
        record = attempt.finish(self._clock())
        try:
            await run_blocking(
                self._log.record,
                record,
                timeout=self._timeouts.execution_log,
                step="execution log record",
            )
        except TransientCollaboratorError as exc:
            LOGGER.error("Failed to persist execution record for %s: %s", record.dedup_key, exc)
        LOGGER.info(
            "Rule %s on %s finished with %s", record.rule_id, record.channel_id, record.outcome.value
        )
        return record
