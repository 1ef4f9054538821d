"""Automation scheduler: the tick loop over enabled rules.

Each tick:
1) Fetch enabled rules (bounded by a timeout)
2) Parse each rule's cadence; bad config is surfaced in stats and skipped
3) Evaluate the cadence in the rule's timezone, fetching anchors lazily
4) Gate every eligibility on the dedup guard (atomic claim)
5) Fire through the executor; release the claim if nothing succeeded

Rules are processed concurrently up to ``max_concurrent_rules``. A failure in
one rule is logged and never aborts the tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Awaitable, Callable, Optional

from core.cadence import anchor_period, first_per_key, parse_cadence, resolve_timezone
from core.clock import utcnow
from core.config import SchedulerConfig, TimeoutConfig
from core.dedup import DedupGuard, build_dedup_key
from core.errors import ConfigurationError, TransientCollaboratorError
from core.executor import FireReport, FireRequest, RuleExecutor
from core.models import AnchorEvent, AutomationRule, EventPeriod
from core.ports import AnchorEventSource, RuleStore
from core.stats import SchedulerStats, TickSample
from core.timeouts import call_with_timeout

LOGGER = logging.getLogger(__name__)

AnchorLookup = Callable[[str, int, tzinfo, datetime], Awaitable[list[AnchorEvent]]]


@dataclass(frozen=True)
class TickReport:
    """What one tick did; returned by ``tick`` for one-shot runs and tests."""

    started_at: datetime
    rules_evaluated: int = 0
    fires: tuple[FireReport, ...] = ()
    skipped: bool = False
    failed: bool = False

    @property
    def records(self) -> list:
        return [record for report in self.fires for record in report.records]


class AutomationScheduler:
    """Owns the tick loop and wires cadence, dedup, and the executor together."""

    def __init__(
        self,
        *,
        rules: RuleStore,
        anchors: AnchorEventSource,
        dedup: DedupGuard,
        executor: RuleExecutor,
        config: SchedulerConfig,
        timeouts: TimeoutConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._rules = rules
        self._anchors = anchors
        self._dedup = dedup
        self._executor = executor
        self._config = config
        self._timeouts = timeouts
        self._clock = clock
        self._stats = SchedulerStats()
        self._active = False
        self._tick_in_progress = False
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._active:
            LOGGER.info("Scheduler already running")
            return
        self._active = True
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(self._stop_event))
        LOGGER.info(
            "Scheduler started (tick every %ss, cooldown %s min)",
            self._config.tick_interval_seconds,
            self._config.cooldown_minutes,
        )

    async def stop(self) -> None:
        """Stop launching ticks and wait for the in-flight tick to finish."""

        if not self._active:
            return
        self._active = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)
        LOGGER.info("Scheduler stopped")

    def is_active(self) -> bool:
        return self._active

    def get_stats(self) -> dict[str, Any]:
        return self._stats.snapshot(
            active=self._active,
            degraded_dedup_checks=self._dedup.degraded_checks,
        )

    async def _run_loop(self, stop: asyncio.Event) -> None:
        interval = self._config.tick_interval_seconds
        while not stop.is_set():
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        now = now or self._clock()
        if self._tick_in_progress:
            # A slow tick is still running; its work is not repeated.
            self._stats.record_overlap()
            LOGGER.warning("Previous tick still running; skipping tick at %s", now.isoformat())
            return TickReport(started_at=now, skipped=True)

        self._tick_in_progress = True
        started = time.monotonic()
        degraded_before = self._dedup.degraded_checks
        report = TickReport(started_at=now, failed=True)
        try:
            report = await self._evaluate(now)
        except Exception:
            LOGGER.exception("Tick at %s failed", now.isoformat())
        finally:
            self._tick_in_progress = False
            self._stats.record_tick(
                TickSample(
                    started_at=now,
                    duration_ms=int((time.monotonic() - started) * 1000),
                    rules_evaluated=report.rules_evaluated,
                    fires=len(report.fires),
                    failed=report.failed,
                    degraded_checks=self._dedup.degraded_checks - degraded_before,
                )
            )
        return report

    async def _evaluate(self, now: datetime) -> TickReport:
        try:
            rules = await call_with_timeout(
                self._rules.list_enabled_rules(),
                self._timeouts.rule_store,
                "rule store",
            )
        except TransientCollaboratorError as exc:
            LOGGER.error("Could not load rules: %s", exc)
            return TickReport(started_at=now, failed=True)

        self._stats.retain_config_errors(rule.id for rule in rules)
        enabled = [rule for rule in rules if rule.enabled]
        if not enabled:
            LOGGER.debug("No enabled rules")
            return TickReport(started_at=now)

        anchor_lookup = self._anchor_lookup()
        slots = asyncio.Semaphore(self._config.max_concurrent_rules)

        async def _guarded(rule: AutomationRule) -> list[FireReport]:
            async with slots:
                return await self._process_rule(rule, now, anchor_lookup)

        results = await asyncio.gather(*(_guarded(rule) for rule in enabled))
        fires = tuple(report for reports in results for report in reports)
        if fires:
            LOGGER.info("Tick fired %s time(s) across %s rules", len(fires), len(enabled))
        return TickReport(started_at=now, rules_evaluated=len(enabled), fires=fires)

    def _anchor_lookup(self) -> AnchorLookup:
        """Return a per-tick anchor fetcher that queries each (type, K, period) once."""

        pending: dict[tuple, asyncio.Task] = {}

        async def _fetch(content_type: str, limit: int, period: EventPeriod) -> list[AnchorEvent]:
            try:
                events = await call_with_timeout(
                    self._anchors.top_events(content_type, period, limit),
                    self._timeouts.anchor_events,
                    "anchor events",
                )
            except TransientCollaboratorError as exc:
                LOGGER.warning("Anchor events unavailable for %s: %s", content_type, exc)
                return []
            return list(events)[:limit]

        async def _lookup(content_type: str, limit: int, tz: tzinfo, now: datetime) -> list[AnchorEvent]:
            period = anchor_period(now, tz)
            key = (content_type, limit, period)
            task = pending.get(key)
            if task is None:
                task = asyncio.create_task(_fetch(content_type, limit, period))
                pending[key] = task
            return await task

        return _lookup

    async def _process_rule(
        self, rule: AutomationRule, now: datetime, anchor_lookup: AnchorLookup
    ) -> list[FireReport]:
        try:
            return await self._fire_rule(rule, now, anchor_lookup)
        except Exception:
            LOGGER.exception("Unexpected error while processing rule %s", rule.id)
            return []

    async def _fire_rule(
        self, rule: AutomationRule, now: datetime, anchor_lookup: AnchorLookup
    ) -> list[FireReport]:
        try:
            cadence = parse_cadence(rule)
            tz = resolve_timezone(rule, self._config.timezone)
        except ConfigurationError as exc:
            if self._stats.record_config_error(rule.id, str(exc)):
                LOGGER.error("Rule %s (%s) has invalid configuration: %s", rule.id, rule.name, exc)
            return []
        self._stats.clear_config_error(rule.id)

        anchors: list[AnchorEvent] = []
        if cadence.needs_anchor_events:
            anchors = await anchor_lookup(rule.content_type, cadence.top_k, tz, now)
            if not anchors:
                LOGGER.debug("No anchor events for rule %s", rule.id)
                return []

        eligible = first_per_key(cadence.evaluate(now.astimezone(tz), anchors))
        reports: list[FireReport] = []
        for eligibility in eligible:
            anchor = eligibility.anchor
            dedup_key = build_dedup_key(rule.id, anchor.id if anchor else None, eligibility.target)
            if await self._dedup.has_recent_successful_fire(dedup_key, now):
                LOGGER.debug("Skipping %s: fired within cooldown", dedup_key)
                continue

            LOGGER.info("Firing rule %s (%s): %s", rule.id, rule.name, eligibility.reason)
            try:
                report = await self._executor.fire(
                    FireRequest(
                        rule=rule,
                        dedup_key=dedup_key,
                        reason=eligibility.reason,
                        fired_at=now,
                        anchor=anchor,
                    )
                )
            except Exception:
                LOGGER.exception("Fire of %s failed unexpectedly", dedup_key)
                await self._dedup.release(dedup_key, now)
                continue
            if not report.succeeded:
                await self._dedup.release(dedup_key, now)
            self._stats.record_fire(rule.id, now, report.records)
            reports.append(report)
        return reports
