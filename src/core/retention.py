"""Execution log retention job."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from core.clock import utcnow
from core.config import RetentionConfig
from core.errors import TransientCollaboratorError
from core.models import PruneResult
from core.ports import ExecutionLogStore
from core.timeouts import run_blocking

LOGGER = logging.getLogger(__name__)


class RetentionJob:
    """Prunes expired records (all outcomes) and stale failure noise."""

    def __init__(
        self,
        store: ExecutionLogStore,
        config: RetentionConfig,
        timeout: float,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._config = config
        self._timeout = timeout
        self._clock = clock
        self.last_result: Optional[PruneResult] = None
        self.last_run_at: Optional[datetime] = None

    async def run_once(self, now: Optional[datetime] = None) -> PruneResult:
        now = now or self._clock()
        result = await run_blocking(
            self._store.prune,
            now - self._config.max_age,
            now - self._config.failed_max_age,
            timeout=self._timeout,
            step="execution log prune",
        )
        self.last_result = result
        self.last_run_at = now
        LOGGER.info(
            "Retention removed %s records (%s expired, %s failed/skipped) and %s claims",
            result.total_records,
            result.expired,
            result.noise,
            result.claims,
        )
        return result

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Prune immediately, then every interval until ``stop`` is set."""

        while not stop.is_set():
            try:
                await self.run_once()
            except TransientCollaboratorError as exc:
                LOGGER.error("Retention pass failed: %s", exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._config.interval_seconds)
            except asyncio.TimeoutError:
                continue
