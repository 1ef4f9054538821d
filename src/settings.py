"""Static configuration for metronome.

All user-editable settings (scheduler, retention, channels, rules, delivery)
live in a single JSON file for quick edits without touching Python. Rules
and channels are re-read by the config store adapters on every tick; the
rest is read once at startup.
"""

import json
import os

from core.config import (
    EngineConfig,
    ExecutorConfig,
    RetentionConfig,
    SchedulerConfig,
    TimeoutConfig,
)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# METRONOME_CONFIG points at an alternative config.json (handy for staging).
CONFIG_PATH = os.getenv("METRONOME_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def _section(name: str) -> dict:
    return _CONFIG.get(name, {}) or {}


def build_engine_config(config: dict) -> EngineConfig:
    """Map the JSON sections onto the frozen core dataclasses."""

    scheduler = config.get("scheduler", {}) or {}
    retention = config.get("retention", {}) or {}
    executor = config.get("executor", {}) or {}
    timeouts = config.get("timeouts", {}) or {}
    return EngineConfig(
        scheduler=SchedulerConfig(
            tick_interval_seconds=float(scheduler.get("tick_interval_seconds", 60)),
            cooldown_minutes=int(scheduler.get("cooldown_minutes", 30)),
            max_concurrent_rules=int(scheduler.get("max_concurrent_rules", 4)),
            timezone=str(scheduler.get("timezone", "UTC")),
        ),
        executor=ExecutorConfig(
            channel_concurrency=int(executor.get("channel_concurrency", 5)),
            fallback_content_type=str(executor.get("fallback_content_type", "news")),
        ),
        retention=RetentionConfig(
            interval_seconds=float(retention.get("interval_seconds", 3600)),
            max_age_days=int(retention.get("max_age_days", 7)),
            failed_max_age_hours=int(retention.get("failed_max_age_hours", 24)),
        ),
        timeouts=TimeoutConfig(**{key: float(value) for key, value in timeouts.items()}),
    )


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

ENGINE = build_engine_config(_CONFIG)

# Where to store the SQLite database (execution log, anchors, approvals).
DB_PATH = _resolve_path(_section("storage").get("db_path", "data/metronome.db"))

# Delivery method switches dispatcher adapters without changing core logic.
# - "bot": Bot API over HTTPS (BOT_TOKEN)
# - "telethon": MTProto client logged in as the bot (API_ID, API_HASH, BOT_TOKEN)
_delivery = _section("delivery")
DELIVERY_METHOD = _delivery.get("method", "bot")
_silent = _delivery.get("silent_hours", [23, 6])
SILENT_HOURS = (int(_silent[0]), int(_silent[1])) if _silent else None
REQUEST_TIMEOUT = float(_delivery.get("request_timeout_seconds", 15))

# Default anti-spam limits; channels may override them with "rate_limit".
RATE_LIMITS = _section("rate_limits")

# Logging configuration (optional).
LOGGING = _section("logging")
