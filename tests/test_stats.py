from __future__ import annotations

from datetime import datetime, timedelta, timezone

from core.stats import TICK_HISTORY, SchedulerStats, TickSample

NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)


def _tick(minute: int, degraded_checks: int = 0, failed: bool = False) -> TickSample:
    return TickSample(
        started_at=NOW + timedelta(minutes=minute),
        duration_ms=10,
        rules_evaluated=1,
        fires=0,
        failed=failed,
        degraded_checks=degraded_checks,
    )


def test_degraded_dedup_check_recovers_once_out_of_the_window() -> None:
    stats = SchedulerStats()
    stats.record_tick(_tick(0, degraded_checks=1))

    health = stats.snapshot(active=True, degraded_dedup_checks=1)["health"]
    assert health["status"] == "degraded"
    assert health["recent_degraded_dedup_checks"] == 1

    for minute in range(1, TICK_HISTORY + 1):
        stats.record_tick(_tick(minute))

    health = stats.snapshot(active=True, degraded_dedup_checks=1)["health"]
    assert health["status"] == "healthy"
    assert health["degraded_dedup_checks"] == 1
    assert health["recent_degraded_dedup_checks"] == 0


def test_failed_last_tick_is_degraded_until_a_good_tick() -> None:
    stats = SchedulerStats()
    stats.record_tick(_tick(0, failed=True))

    assert stats.snapshot(active=True, degraded_dedup_checks=0)["health"]["status"] == "degraded"

    stats.record_tick(_tick(1))

    health = stats.snapshot(active=True, degraded_dedup_checks=0)["health"]
    assert health["status"] == "healthy"
    assert health["failed_ticks"] == 1


def test_retain_config_errors_drops_removed_rules() -> None:
    stats = SchedulerStats()
    assert stats.record_config_error("gone", "bad times")
    assert stats.record_config_error("kept", "bad parity")
    assert not stats.record_config_error("kept", "bad parity")

    stats.retain_config_errors(["kept", "other"])

    assert stats.config_errors == {"kept": "bad parity"}
    assert stats.snapshot(active=False, degraded_dedup_checks=0)["health"]["status"] == "stopped"
