"""Per-channel fire attempt lifecycle.

Canonical lifecycle:
PENDING -> GENERATING -> GENERATED | GEN_FAILED
GENERATED -> DISPATCHING | AWAITING_APPROVAL
DISPATCHING -> SENT | SEND_FAILED
AWAITING_APPROVAL -> PENDING_APPROVAL | SEND_FAILED
PENDING -> SKIPPED_RATE_LIMITED

An unexpected error aborts to SEND_FAILED once delivery has started and to
GEN_FAILED before that.

Terminal states map one-to-one onto execution record outcomes.
"""

from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Optional

from core.errors import InvalidTransitionError
from core.models import AnchorEvent, AutomationRule, Channel, ExecutionRecord, Outcome


class AttemptState(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    GENERATED = "GENERATED"
    DISPATCHING = "DISPATCHING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    SENT = "SENT"
    SEND_FAILED = "SEND_FAILED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    GEN_FAILED = "GEN_FAILED"
    SKIPPED_RATE_LIMITED = "SKIPPED_RATE_LIMITED"


_TERMINAL: dict[AttemptState, Outcome] = {
    AttemptState.SENT: Outcome.SENT,
    AttemptState.SEND_FAILED: Outcome.SEND_FAILED,
    AttemptState.PENDING_APPROVAL: Outcome.PENDING_APPROVAL,
    AttemptState.GEN_FAILED: Outcome.GEN_FAILED,
    AttemptState.SKIPPED_RATE_LIMITED: Outcome.SKIPPED_RATE_LIMITED,
}

_ALLOWED: dict[AttemptState, set[AttemptState]] = {
    AttemptState.PENDING: {AttemptState.GENERATING, AttemptState.SKIPPED_RATE_LIMITED},
    AttemptState.GENERATING: {AttemptState.GENERATED, AttemptState.GEN_FAILED},
    AttemptState.GENERATED: {AttemptState.DISPATCHING, AttemptState.AWAITING_APPROVAL},
    AttemptState.DISPATCHING: {AttemptState.SENT, AttemptState.SEND_FAILED},
    AttemptState.AWAITING_APPROVAL: {AttemptState.PENDING_APPROVAL, AttemptState.SEND_FAILED},
}


def is_terminal(state: AttemptState) -> bool:
    return state in _TERMINAL


class ChannelAttempt:
    """Mutable progress of one (rule, channel) attempt until it is recorded."""

    def __init__(
        self,
        rule: AutomationRule,
        channel: Channel,
        dedup_key: str,
        fired_at: datetime,
        anchor: Optional[AnchorEvent] = None,
    ) -> None:
        self.rule = rule
        self.channel = channel
        self.dedup_key = dedup_key
        self.fired_at = fired_at
        self.anchor = anchor
        self.state = AttemptState.PENDING
        self.content_type = rule.content_type
        self.error: Optional[str] = None
        self.message_id: Optional[str] = None
        self.fallback_used = False
        self._started = time.monotonic()

    def advance(self, new_state: AttemptState, error: Optional[str] = None) -> None:
        if new_state not in _ALLOWED.get(self.state, set()):
            raise InvalidTransitionError(self.state.value, new_state.value)
        self.state = new_state
        if error:
            self.error = error

    def abort(self, error: str) -> None:
        """Force a terminal state after an unexpected error in the pipeline."""

        if is_terminal(self.state):
            return
        if self.state in (AttemptState.DISPATCHING, AttemptState.AWAITING_APPROVAL):
            self.state = AttemptState.SEND_FAILED
        else:
            self.state = AttemptState.GEN_FAILED
        self.error = error

    def finish(self, completed_at: datetime) -> ExecutionRecord:
        """Freeze the attempt into its execution record."""

        outcome = _TERMINAL.get(self.state)
        if outcome is None:
            raise InvalidTransitionError(self.state.value, "RECORDED")
        return ExecutionRecord(
            rule_id=self.rule.id,
            channel_id=self.channel.id,
            dedup_key=self.dedup_key,
            content_type=self.content_type,
            fired_at=self.fired_at,
            completed_at=completed_at,
            outcome=outcome,
            duration_ms=int((time.monotonic() - self._started) * 1000),
            anchor_id=self.anchor.id if self.anchor else None,
            message_id=self.message_id,
            error=self.error,
            fallback_used=self.fallback_used,
        )
