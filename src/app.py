"""Application entry point for the metronome scheduler."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
from dataclasses import dataclass
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.anchor_import import import_anchor_file
from adapters.config_store import ConfigChannelDirectory, ConfigRuleStore
from adapters.rate_limiter import LogBackedRateLimiter, RateLimitConfig
from adapters.sqlite_storage import (
    SQLiteAnchorEventSource,
    SQLiteApprovalStore,
    SQLiteExecutionLog,
)
from adapters.telegram_bot_dispatcher import TelegramBotDispatcher
from adapters.telegram_dispatcher import TelegramClientDispatcher
from adapters.template_generator import TemplateContentGenerator
from client import build_client, start_bot_client
from core.clock import utcnow
from core.config import validate_engine_config
from core.dedup import DedupGuard
from core.executor import RuleExecutor
from core.retention import RetentionJob
from core.scheduler import AutomationScheduler

NAME = "METRONOME"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["BOT_TOKEN", "API_HASH"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/metronome.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


@dataclass
class _Engine:
    scheduler: AutomationScheduler
    retention: RetentionJob
    log: SQLiteExecutionLog
    client: Any = None


def _open_execution_log() -> SQLiteExecutionLog:
    log = SQLiteExecutionLog(settings.DB_PATH)
    log.init_db()
    return log


async def _build_engine() -> _Engine:
    """Wire adapters into the core; the only place that knows both sides."""

    engine_config = settings.ENGINE
    validate_engine_config(engine_config)

    log = _open_execution_log()
    anchors = SQLiteAnchorEventSource(settings.DB_PATH)
    anchors.init_db()
    approvals = SQLiteApprovalStore(settings.DB_PATH)
    approvals.init_db()
    channels = ConfigChannelDirectory(settings.CONFIG_PATH)
    limiter = LogBackedRateLimiter(log, RateLimitConfig().merged(settings.RATE_LIMITS), channels)

    load_dotenv()
    client = None
    if settings.DELIVERY_METHOD == "bot":
        bot_token = os.getenv("BOT_TOKEN")
        if not bot_token:
            raise RuntimeError("BOT_TOKEN is required when delivery.method=bot")
        dispatcher = TelegramBotDispatcher(
            bot_token,
            silent_hours=settings.SILENT_HOURS,
            request_timeout=settings.REQUEST_TIMEOUT,
        )
    elif settings.DELIVERY_METHOD == "telethon":
        client = await start_bot_client(build_client())
        dispatcher = TelegramClientDispatcher(client, silent_hours=settings.SILENT_HOURS)
    else:
        raise RuntimeError("delivery.method must be 'bot' or 'telethon'")
    LOGGER.info("Selected delivery method - %s", settings.DELIVERY_METHOD)

    timeouts = engine_config.timeouts
    executor = RuleExecutor(
        channels=channels,
        generator=TemplateContentGenerator(),
        rate_limiter=limiter,
        dispatcher=dispatcher,
        approvals=approvals,
        log_store=log,
        config=engine_config.executor,
        timeouts=timeouts,
    )
    scheduler = AutomationScheduler(
        rules=ConfigRuleStore(settings.CONFIG_PATH),
        anchors=anchors,
        dedup=DedupGuard(log, engine_config.scheduler.cooldown, timeouts.execution_log),
        executor=executor,
        config=engine_config.scheduler,
        timeouts=timeouts,
    )
    retention = RetentionJob(log, engine_config.retention, timeouts.execution_log)
    return _Engine(scheduler=scheduler, retention=retention, log=log, client=client)


async def _close(engine: _Engine) -> None:
    if engine.client is not None:
        await engine.client.disconnect()


async def _run_forever() -> None:
    engine = await _build_engine()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass

    await engine.scheduler.start()
    retention_task = asyncio.create_task(engine.retention.run_forever(stop))
    LOGGER.info("Scheduler running. Press Ctrl+C to stop.")
    try:
        await stop.wait()
    finally:
        stop.set()
        await engine.scheduler.stop()
        await retention_task
        LOGGER.info("Final stats: %s", json.dumps(engine.scheduler.get_stats()))
        await _close(engine)


async def _tick_once() -> None:
    engine = await _build_engine()
    try:
        report = await engine.scheduler.tick()
    finally:
        await _close(engine)
    print(f"Rules evaluated: {report.rules_evaluated}")
    print(f"Fires: {len(report.fires)}")
    for record in report.records:
        line = f"  {record.rule_id} -> {record.channel_id}: {record.outcome.value}"
        if record.error:
            line += f" ({record.error})"
        print(line)


async def _prune_once() -> None:
    engine_config = settings.ENGINE
    validate_engine_config(engine_config)
    job = RetentionJob(_open_execution_log(), engine_config.retention, engine_config.timeouts.execution_log)
    result = await job.run_once()
    print(
        f"Removed {result.total_records} records "
        f"({result.expired} expired, {result.noise} failed/skipped) and {result.claims} claims"
    )


def _print_stats(hours: Optional[int]) -> None:
    since = utcnow() - timedelta(hours=hours) if hours else None
    summary = _open_execution_log().summarize(since)
    print(json.dumps(summary, indent=2, sort_keys=True))


def _import_anchors(path: str) -> None:
    store = SQLiteAnchorEventSource(settings.DB_PATH)
    store.init_db()
    print(f"Imported {import_anchor_file(path, store)} anchor events")


def _print_pending_approvals() -> None:
    store = SQLiteApprovalStore(settings.DB_PATH)
    store.init_db()
    pending = store.list_pending()
    if not pending:
        print("No content awaiting approval")
        return
    for item in pending:
        print(f"{item['id']}  {item['created_at']}  {item['rule_id']} -> {item['channel_id']} ({item['content_type']})")


def _run() -> None:
    _print_banner()
    _configure_logging()
    LOGGER.info("Starting metronome")
    asyncio.run(_run_forever())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="metronome")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the scheduler and retention job")
    subparsers.add_parser("tick", help="Evaluate every rule once and exit")
    subparsers.add_parser("prune", help="Run one retention pass over the execution log")
    stats_parser = subparsers.add_parser("stats", help="Show outcome counts from the execution log")
    stats_parser.add_argument("--hours", type=int, default=None, help="Only count the last N hours")
    anchors_parser = subparsers.add_parser("anchors", help="Manage anchor events")
    anchors_commands = anchors_parser.add_subparsers(dest="anchors_command", required=True)
    import_parser = anchors_commands.add_parser("import", help="Load anchor events from a JSON file")
    import_parser.add_argument("path", help="JSON list of events, or an object with an 'events' list")
    subparsers.add_parser("approvals", help="List content awaiting approval")

    args = parser.parse_args(argv)
    if args.command == "tick":
        _configure_logging()
        asyncio.run(_tick_once())
        return
    if args.command == "prune":
        _configure_logging()
        asyncio.run(_prune_once())
        return
    if args.command == "stats":
        _print_stats(args.hours)
        return
    if args.command == "anchors":
        _configure_logging()
        _import_anchors(args.path)
        return
    if args.command == "approvals":
        _print_pending_approvals()
        return
    _run()


if __name__ == "__main__":
    main()
