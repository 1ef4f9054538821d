"""Load anchor events from a JSON file into the anchor store.

The file is either a list of events or an object with an ``events`` list.
Each event needs ``id`` and ``starts_at`` (ISO 8601, naive = UTC) and may set
``importance``, ``content_types`` (empty = relevant to every type), and
``metadata``.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Iterable

from adapters.sqlite_storage import SQLiteAnchorEventSource
from core.clock import ensure_utc
from core.models import AnchorEvent

LOGGER = logging.getLogger(__name__)


def parse_anchor_entries(entries: Iterable[Any]) -> dict[tuple[str, ...], list[AnchorEvent]]:
    """Group valid entries by content types; malformed entries are skipped."""

    grouped: dict[tuple[str, ...], list[AnchorEvent]] = defaultdict(list)
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("starts_at"):
            LOGGER.warning("Skipping anchor entry without id/starts_at: %s", entry)
            continue
        try:
            starts_at = ensure_utc(datetime.fromisoformat(str(entry["starts_at"])))
            importance = float(entry.get("importance", 0.0))
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Skipping anchor entry %s: %s", entry.get("id"), exc)
            continue
        metadata = entry.get("metadata") or {}
        if not isinstance(metadata, dict):
            LOGGER.warning("Skipping anchor entry %s: metadata must be an object", entry.get("id"))
            continue
        types = tuple(sorted({str(value).lower() for value in entry.get("content_types") or []}))
        grouped[types].append(
            AnchorEvent(id=str(entry["id"]), starts_at=starts_at, importance=importance, metadata=metadata)
        )
    return grouped


def import_anchor_file(path: str, store: SQLiteAnchorEventSource) -> int:
    with open(path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    entries = payload.get("events", []) if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise ValueError(f"{path} must hold a list of events or an object with an 'events' list")

    count = 0
    for content_types, events in parse_anchor_entries(entries).items():
        count += store.upsert_events(events, content_types)
    LOGGER.info("Imported %s anchor events from %s", count, path)
    return count
