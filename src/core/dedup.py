"""Deduplication helpers (core domain)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from core.errors import TransientCollaboratorError
from core.ports import ExecutionLogStore
from core.timeouts import run_blocking

LOGGER = logging.getLogger(__name__)


def build_dedup_key(rule_id: str, anchor_id: Optional[str] = None, target: Optional[str] = None) -> str:
    """Return the dedup identity for a rule, one of its anchors, or one of its fixed targets."""

    if anchor_id is not None:
        return f"rule:{rule_id}|anchor:{anchor_id}"
    if target is not None:
        return f"rule:{rule_id}|target:{target}"
    return f"rule:{rule_id}"


class DedupGuard:
    """Gate fires on the execution log's atomic claim.

    The store is the ground truth. The in-process map only remembers claims
    this process made itself, so it can short-circuit an obvious "yes" but
    never answers "no" on its own.
    """

    def __init__(self, store: ExecutionLogStore, cooldown: timedelta, store_timeout: float) -> None:
        self._store = store
        self._cooldown = cooldown
        self._timeout = store_timeout
        self._claims: dict[str, datetime] = {}
        self.degraded_checks = 0

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def _forget_expired(self, now: datetime) -> None:
        expired = [key for key, claimed_at in self._claims.items() if now - claimed_at > self._cooldown]
        for key in expired:
            del self._claims[key]

    async def has_recent_successful_fire(self, dedup_key: str, now: datetime) -> bool:
        """Return True if the key already fired within the cooldown.

        A False answer means the key has just been claimed for this caller; the
        check and the claim are one conditional insert at the store layer.
        """

        self._forget_expired(now)
        if dedup_key in self._claims:
            LOGGER.debug("Dedup skip for %s (claimed by this process)", dedup_key)
            return True

        try:
            claimed = await run_blocking(
                self._store.try_claim,
                dedup_key,
                self._cooldown,
                now,
                timeout=self._timeout,
                step="execution log claim",
            )
        except TransientCollaboratorError as exc:
            # Availability over strict dedup: fire anyway, but remember it locally.
            self.degraded_checks += 1
            LOGGER.warning("Dedup store unavailable for %s, allowing fire: %s", dedup_key, exc)
            self._claims[dedup_key] = now
            return False

        if not claimed:
            LOGGER.debug("Dedup skip for %s (claimed in store)", dedup_key)
            return True

        self._claims[dedup_key] = now
        return False

    async def release(self, dedup_key: str, now: datetime) -> None:
        """Drop a claim whose fire produced no successful record."""

        claimed_at = self._claims.pop(dedup_key, now)
        try:
            await run_blocking(
                self._store.release_claim,
                dedup_key,
                claimed_at,
                timeout=self._timeout,
                step="execution log release",
            )
        except TransientCollaboratorError as exc:
            LOGGER.warning("Could not release dedup claim %s: %s", dedup_key, exc)
