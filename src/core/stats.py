"""In-process scheduler statistics and health."""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Iterable, Optional

from core.models import ExecutionRecord, Outcome

TICK_HISTORY = 100


@dataclass(frozen=True)
class TickSample:
    started_at: datetime
    duration_ms: int
    rules_evaluated: int
    fires: int
    failed: bool = False
    degraded_checks: int = 0


class SchedulerStats:
    """Counters behind ``AutomationScheduler.get_stats``."""

    def __init__(self) -> None:
        self.execution_counts: Counter[str] = Counter({outcome.value: 0 for outcome in Outcome})
        self.last_fire_times: dict[str, datetime] = {}
        self.config_errors: dict[str, str] = {}
        self.ticks: Deque[TickSample] = deque(maxlen=TICK_HISTORY)
        self.overlapping_ticks_skipped = 0
        self.failed_ticks = 0

    def record_tick(self, sample: TickSample) -> None:
        self.ticks.append(sample)
        if sample.failed:
            self.failed_ticks += 1

    def record_overlap(self) -> None:
        self.overlapping_ticks_skipped += 1

    def record_config_error(self, rule_id: str, message: str) -> bool:
        """Store the error; return True when it is new for this rule."""

        is_new = self.config_errors.get(rule_id) != message
        self.config_errors[rule_id] = message
        return is_new

    def clear_config_error(self, rule_id: str) -> None:
        self.config_errors.pop(rule_id, None)

    def retain_config_errors(self, rule_ids: Iterable[str]) -> None:
        """Forget errors for rules that are no longer configured."""

        keep = set(rule_ids)
        for rule_id in [rule_id for rule_id in self.config_errors if rule_id not in keep]:
            del self.config_errors[rule_id]

    def record_fire(self, rule_id: str, fired_at: datetime, records: tuple[ExecutionRecord, ...]) -> None:
        for record in records:
            self.execution_counts[record.outcome.value] += 1
        if any(record.succeeded for record in records):
            self.last_fire_times[rule_id] = fired_at

    def _last_tick(self) -> Optional[TickSample]:
        return self.ticks[-1] if self.ticks else None

    def snapshot(self, *, active: bool, degraded_dedup_checks: int) -> dict[str, Any]:
        """Health is judged on the rolling tick window, so it recovers on its own."""

        last_tick = self._last_tick()
        recent_degraded = sum(sample.degraded_checks for sample in self.ticks)
        if not active:
            status = "stopped"
        elif self.config_errors or recent_degraded or (last_tick and last_tick.failed):
            status = "degraded"
        else:
            status = "healthy"

        average_ms = 0
        if self.ticks:
            average_ms = round(sum(sample.duration_ms for sample in self.ticks) / len(self.ticks))

        return {
            "execution_counts": dict(self.execution_counts),
            "last_fire_times": {rule_id: at.isoformat() for rule_id, at in self.last_fire_times.items()},
            "health": {
                "status": status,
                "config_errors": dict(self.config_errors),
                "degraded_dedup_checks": degraded_dedup_checks,
                "recent_degraded_dedup_checks": recent_degraded,
                "last_tick_at": last_tick.started_at.isoformat() if last_tick else None,
                "average_tick_ms": average_ms,
                "ticks_recorded": len(self.ticks),
                "failed_ticks": self.failed_ticks,
                "overlapping_ticks_skipped": self.overlapping_ticks_skipped,
            },
        }
