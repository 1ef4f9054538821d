from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.config import (
    EngineConfig,
    RetentionConfig,
    SchedulerConfig,
    validate_engine_config,
)
from core.errors import ConfigurationError
from core.models import PruneResult
from core.retention import RetentionJob

NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)


class FakePruneStore:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls: list[tuple[datetime, datetime]] = []

    def try_claim(self, dedup_key, window, now) -> bool:
        return True

    def release_claim(self, dedup_key, claimed_at) -> None:
        pass

    def record(self, record) -> None:
        pass

    def prune(self, older_than: datetime, non_terminal_older_than: datetime) -> PruneResult:
        self.calls.append((older_than, non_terminal_older_than))
        if self.failures:
            self.failures -= 1
            raise RuntimeError("disk I/O error")
        return PruneResult(expired=3, noise=2, claims=1)


def test_run_once_uses_both_horizons() -> None:
    store = FakePruneStore()
    job = RetentionJob(store, RetentionConfig(), timeout=1.0)

    result = asyncio.run(job.run_once(NOW))

    assert store.calls == [(NOW - timedelta(days=7), NOW - timedelta(hours=24))]
    assert result.total_records == 5
    assert job.last_result == result
    assert job.last_run_at == NOW


def test_run_forever_survives_failures_until_stopped() -> None:
    store = FakePruneStore(failures=1)
    job = RetentionJob(store, RetentionConfig(interval_seconds=0.01), timeout=1.0, clock=lambda: NOW)

    async def _scenario() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(job.run_forever(stop))
        while len(store.calls) < 2:
            await asyncio.sleep(0.01)
        stop.set()
        await task

    asyncio.run(_scenario())

    assert len(store.calls) >= 2
    assert job.last_result == PruneResult(expired=3, noise=2, claims=1)


def test_default_engine_config_is_valid() -> None:
    validate_engine_config(EngineConfig())


@pytest.mark.parametrize(
    "config",
    [
        EngineConfig(scheduler=SchedulerConfig(cooldown_minutes=10)),
        EngineConfig(scheduler=SchedulerConfig(tick_interval_seconds=0)),
        EngineConfig(scheduler=SchedulerConfig(max_concurrent_rules=0)),
        EngineConfig(
            scheduler=SchedulerConfig(cooldown_minutes=120),
            retention=RetentionConfig(failed_max_age_hours=1),
        ),
        EngineConfig(
            scheduler=SchedulerConfig(cooldown_minutes=60 * 24 * 8),
            retention=RetentionConfig(failed_max_age_hours=24 * 9),
        ),
    ],
)
def test_unsafe_engine_config_is_rejected(config: EngineConfig) -> None:
    with pytest.raises(ConfigurationError):
        validate_engine_config(config)
