from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from core.dedup import DedupGuard, build_dedup_key
from core.models import PruneResult

NOW = datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc)
COOLDOWN = timedelta(minutes=30)


class FakeClaimStore:
    def __init__(self) -> None:
        self.claims: list[tuple[str, datetime]] = []
        self.claim_calls = 0
        self.fail = False

    def try_claim(self, dedup_key: str, window: timedelta, now: datetime) -> bool:
        self.claim_calls += 1
        if self.fail:
            raise RuntimeError("database is locked")
        if any(key == dedup_key and at >= now - window for key, at in self.claims):
            return False
        self.claims.append((dedup_key, now))
        return True

    def release_claim(self, dedup_key: str, claimed_at: datetime) -> None:
        self.claims.remove((dedup_key, claimed_at))

    def record(self, record) -> None:
        pass

    def prune(self, older_than: datetime, non_terminal_older_than: datetime) -> PruneResult:
        return PruneResult()


def test_build_dedup_key() -> None:
    assert build_dedup_key("r1") == "rule:r1"
    assert build_dedup_key("r1", "m7") == "rule:r1|anchor:m7"
    assert build_dedup_key("r1", target="09:00") == "rule:r1|target:09:00"


def test_first_check_claims_and_second_is_blocked() -> None:
    store = FakeClaimStore()
    guard = DedupGuard(store, COOLDOWN, store_timeout=1.0)

    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW)) is False
    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW + timedelta(minutes=5))) is True
    # The second answer came from this process's own claim.
    assert store.claim_calls == 1


def test_claim_from_another_process_blocks() -> None:
    store = FakeClaimStore()
    store.claims.append(("rule:r1", NOW - timedelta(minutes=10)))
    guard = DedupGuard(store, COOLDOWN, store_timeout=1.0)

    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW)) is True


def test_key_is_free_again_after_cooldown() -> None:
    store = FakeClaimStore()
    guard = DedupGuard(store, COOLDOWN, store_timeout=1.0)

    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW)) is False
    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW + COOLDOWN)) is True
    later = NOW + COOLDOWN + timedelta(seconds=1)
    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", later)) is False
    assert len(store.claims) == 2


def test_release_lets_the_key_fire_again() -> None:
    store = FakeClaimStore()
    guard = DedupGuard(store, COOLDOWN, store_timeout=1.0)

    asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW))
    asyncio.run(guard.release("rule:r1", NOW))

    assert store.claims == []
    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW + timedelta(minutes=1))) is False


def test_store_failure_allows_fire_once_and_counts_degraded() -> None:
    store = FakeClaimStore()
    store.fail = True
    guard = DedupGuard(store, COOLDOWN, store_timeout=1.0)

    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW)) is False
    assert guard.degraded_checks == 1
    # The local allowance still blocks a second fire in this process.
    assert asyncio.run(guard.has_recent_successful_fire("rule:r1", NOW + timedelta(minutes=1))) is True
