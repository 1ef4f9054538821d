"""SQLite storage adapter.

Implements the execution log, anchor event source, and approval store ports
on one SQLite file. Connections run in autocommit mode; the dedup claim opens
its own ``BEGIN IMMEDIATE`` transaction so the check and the insert are one
atomic step, even across processes sharing the database.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional

from core.clock import ensure_utc, utcnow
from core.models import (
    NOISE_OUTCOMES,
    SUCCESS_OUTCOMES,
    AnchorEvent,
    AutomationRule,
    Channel,
    Content,
    EventPeriod,
    ExecutionRecord,
    Outcome,
    PruneResult,
)

LOGGER = logging.getLogger(__name__)

# Fixed width, always UTC: stored timestamps compare correctly as text.
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _ts(value: datetime) -> str:
    return ensure_utc(value).strftime(_TS_FORMAT)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


class _SQLiteFile:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        parent = Path(db_path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()


class SQLiteExecutionLog(_SQLiteFile):
    """Durable execution log plus the dedup claim table."""

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - dedup_claims: one row per claimed fire of a dedup key
        - execution_records: append-only outcome per (rule, channel) attempt
        """

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dedup_claims (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    dedup_key TEXT NOT NULL,
                    claimed_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_claims_key ON dedup_claims (dedup_key, claimed_at)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    dedup_key TEXT NOT NULL,
                    anchor_id TEXT,
                    content_type TEXT NOT NULL,
                    fired_at TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    duration_ms INTEGER NOT NULL,
                    message_id TEXT,
                    error TEXT,
                    fallback_used INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_completed ON execution_records (completed_at)"
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_records_channel
                ON execution_records (channel_id, outcome, completed_at)
                """
            )

    def try_claim(self, dedup_key: str, window: timedelta, now: datetime) -> bool:
        """Insert a claim unless one at or after ``now - window`` exists."""

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cur = conn.execute(
                    """
                    INSERT INTO dedup_claims (dedup_key, claimed_at)
                    SELECT ?, ?
                    WHERE NOT EXISTS (
                        SELECT 1 FROM dedup_claims WHERE dedup_key = ? AND claimed_at >= ?
                    )
                    """,
                    (dedup_key, _ts(now), dedup_key, _ts(now - window)),
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        return cur.rowcount == 1

    def release_claim(self, dedup_key: str, claimed_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM dedup_claims WHERE dedup_key = ? AND claimed_at = ?",
                (dedup_key, _ts(claimed_at)),
            )

    def record(self, record: ExecutionRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO execution_records (
                    rule_id,
                    channel_id,
                    dedup_key,
                    anchor_id,
                    content_type,
                    fired_at,
                    completed_at,
                    outcome,
                    duration_ms,
                    message_id,
                    error,
                    fallback_used
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.rule_id,
                    record.channel_id,
                    record.dedup_key,
                    record.anchor_id,
                    record.content_type,
                    _ts(record.fired_at),
                    _ts(record.completed_at),
                    record.outcome.value,
                    record.duration_ms,
                    record.message_id,
                    record.error,
                    int(record.fallback_used),
                ),
            )

    def prune(self, older_than: datetime, non_terminal_older_than: datetime) -> PruneResult:
        """Delete expired records, stale failure noise, and stale claims."""

        noise = [outcome.value for outcome in NOISE_OUTCOMES]
        placeholders = ", ".join("?" for _ in noise)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                expired = conn.execute(
                    "DELETE FROM execution_records WHERE completed_at < ?",
                    (_ts(older_than),),
                ).rowcount
                noisy = conn.execute(
                    f"""
                    DELETE FROM execution_records
                    WHERE completed_at < ? AND outcome IN ({placeholders})
                    """,
                    (_ts(non_terminal_older_than), *noise),
                ).rowcount
                claims = conn.execute(
                    "DELETE FROM dedup_claims WHERE claimed_at < ?",
                    (_ts(non_terminal_older_than),),
                ).rowcount
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise
        return PruneResult(expired=expired, noise=noisy, claims=claims)

    def list_records(self, rule_id: Optional[str] = None) -> list[ExecutionRecord]:
        query = "SELECT * FROM execution_records"
        params: tuple = ()
        if rule_id is not None:
            query += " WHERE rule_id = ?"
            params = (rule_id,)
        with self._connect() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [
            ExecutionRecord(
                rule_id=row["rule_id"],
                channel_id=row["channel_id"],
                dedup_key=row["dedup_key"],
                content_type=row["content_type"],
                fired_at=_parse_ts(row["fired_at"]),
                completed_at=_parse_ts(row["completed_at"]),
                outcome=Outcome(row["outcome"]),
                duration_ms=int(row["duration_ms"]),
                anchor_id=row["anchor_id"],
                message_id=row["message_id"],
                error=row["error"],
                fallback_used=bool(row["fallback_used"]),
            )
            for row in rows
        ]

    def count_claims(self, dedup_key: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM dedup_claims WHERE dedup_key = ?",
                (dedup_key,),
            ).fetchone()
        return int(row["total"])

    def summarize(self, since: Optional[datetime] = None) -> dict[str, Any]:
        """Outcome counts and last successful fire per rule, for the stats command."""

        where = ""
        params: tuple = ()
        if since is not None:
            where = "WHERE completed_at >= ?"
            params = (_ts(since),)
        success = [outcome.value for outcome in SUCCESS_OUTCOMES]
        with self._connect() as conn:
            counts = conn.execute(
                f"SELECT outcome, COUNT(*) AS total FROM execution_records {where} GROUP BY outcome",
                params,
            ).fetchall()
            last_fires = conn.execute(
                f"""
                SELECT rule_id, MAX(fired_at) AS last_fired
                FROM execution_records
                WHERE outcome IN ({", ".join("?" for _ in success)})
                GROUP BY rule_id
                """,
                tuple(success),
            ).fetchall()
            durations = conn.execute(
                f"""
                SELECT AVG(duration_ms) AS average_ms, COUNT(*) AS total
                FROM (SELECT duration_ms FROM execution_records {where} ORDER BY id DESC LIMIT 100)
                """,
                params,
            ).fetchone()

        execution_counts = {outcome.value: 0 for outcome in Outcome}
        for row in counts:
            execution_counts[row["outcome"]] = int(row["total"])
        return {
            "execution_counts": execution_counts,
            "last_fire_times": {row["rule_id"]: row["last_fired"] for row in last_fires},
            "recent_average_duration_ms": round(durations["average_ms"] or 0),
            "recent_records": int(durations["total"]),
        }

    def count_sent(
        self, channel_id: str, since: datetime, content_type: Optional[str] = None
    ) -> int:
        """Number of SENT records for a channel since ``since`` (optionally one type)."""

        query = """
            SELECT COUNT(*) AS total FROM execution_records
            WHERE channel_id = ? AND outcome = ? AND completed_at >= ?
        """
        params: list[Any] = [channel_id, Outcome.SENT.value, _ts(since)]
        if content_type is not None:
            query += " AND content_type = ?"
            params.append(content_type)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return int(row["total"])

    def last_sent_at(self, channel_id: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT MAX(completed_at) AS last_sent FROM execution_records
                WHERE channel_id = ? AND outcome = ?
                """,
                (channel_id, Outcome.SENT.value),
            ).fetchone()
        return _parse_ts(row["last_sent"])


class SQLiteAnchorEventSource(_SQLiteFile):
    """Anchor events (matches) ranked by importance, read from ``anchor_events``.

    The table is filled by ``metronome anchors import`` or any external writer.
    """

    def init_db(self) -> None:
        # Fields:
        # - content_types: JSON list of types the event is relevant to; empty = all
        # - metadata: JSON object handed to content generation
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS anchor_events (
                    id TEXT PRIMARY KEY,
                    starts_at TEXT NOT NULL,
                    importance REAL NOT NULL DEFAULT 0,
                    content_types TEXT NOT NULL DEFAULT '[]',
                    metadata TEXT NOT NULL DEFAULT '{}'
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_anchor_starts ON anchor_events (starts_at)"
            )

    def upsert_events(self, events: Iterable[AnchorEvent], content_types: Iterable[str] = ()) -> int:
        types = json.dumps(sorted(set(content_types)))
        count = 0
        with self._connect() as conn:
            for event in events:
                conn.execute(
                    """
                    INSERT INTO anchor_events (id, starts_at, importance, content_types, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        starts_at = excluded.starts_at,
                        importance = excluded.importance,
                        content_types = excluded.content_types,
                        metadata = excluded.metadata
                    """,
                    (event.id, _ts(event.starts_at), event.importance, types, json.dumps(dict(event.metadata))),
                )
                count += 1
        return count

    def _query(self, content_type: str, period: EventPeriod, limit: int) -> list[AnchorEvent]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM anchor_events
                WHERE starts_at >= ? AND starts_at < ?
                ORDER BY importance DESC, starts_at ASC
                """,
                (_ts(period.start), _ts(period.end)),
            ).fetchall()
        events: list[AnchorEvent] = []
        for row in rows:
            types = json.loads(row["content_types"] or "[]")
            if types and content_type not in types:
                continue
            events.append(
                AnchorEvent(
                    id=row["id"],
                    starts_at=_parse_ts(row["starts_at"]),
                    importance=float(row["importance"]),
                    metadata=json.loads(row["metadata"] or "{}"),
                )
            )
            if len(events) >= limit:
                break
        return events

    async def top_events(self, content_type: str, period: EventPeriod, limit: int) -> list[AnchorEvent]:
        return await asyncio.to_thread(self._query, content_type, period, limit)


class SQLiteApprovalStore(_SQLiteFile):
    """Parks generated content until a human approves it."""

    def init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_approvals (
                    id TEXT PRIMARY KEY,
                    rule_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    language TEXT NOT NULL,
                    title TEXT,
                    text TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                )
                """
            )

    def _insert(self, rule: AutomationRule, content: Content, channel: Channel) -> str:
        approval_id = uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO pending_approvals (
                    id, rule_id, channel_id, content_type, language, title, text, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    approval_id,
                    rule.id,
                    channel.id,
                    content.content_type,
                    content.language,
                    content.title,
                    content.text,
                    _ts(utcnow()),
                ),
            )
        LOGGER.info("Content for rule %s on %s awaits approval (%s)", rule.id, channel.id, approval_id)
        return approval_id

    async def create_pending(self, rule: AutomationRule, content: Content, channel: Channel) -> str:
        return await asyncio.to_thread(self._insert, rule, content, channel)

    def list_pending(self) -> list[Mapping[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM pending_approvals WHERE status = 'pending' ORDER BY created_at"
            ).fetchall()
        return [dict(row) for row in rows]
