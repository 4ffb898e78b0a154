#!/usr/bin/env python3
"""Incremental ingestion worker.

Runs one ingestion cycle (or scheduled cycles) that:
- fetches a snapshot from the configured upstream source (JSON API or RSS)
- reads the identity keys already present in the sink (Postgres or CSV)
- appends only the genuinely new records, in batches

INGEST_MODE=once (default) runs a single cycle; INGEST_MODE=scheduled runs one
immediately and then every SCHEDULE_MINUTES until SIGINT/SIGTERM.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import time
from typing import List

import psycopg
import schedule

from dedupe_ingest.config import IngestSettings
from dedupe_ingest.errors import InvalidConfiguration
from dedupe_ingest.ingestion.sources import BaseSource, JsonApiSource, RSSSource, parse_feed_list
from dedupe_ingest.notify.notifiers import (
    CompositeNotifier,
    DiscordNotifier,
    LogNotifier,
    ReportFileNotifier,
    TelegramNotifier,
)
from dedupe_ingest.pipeline.locking import ProcessLock
from dedupe_ingest.pipeline.orchestrator import RunOrchestrator
from dedupe_ingest.pipeline.results import CycleResult, CycleStatus
from dedupe_ingest.storage.csv_sink import CsvSink
from dedupe_ingest.storage.postgres_schema import ensure_postgres_schema
from dedupe_ingest.storage.postgres_sink import PostgresSink

logger = logging.getLogger("ingest_worker")


def configure_logging() -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = os.environ.get("LOG_FILE", "").strip()
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def build_source(settings: IngestSettings) -> BaseSource:
    if settings.source_kind == "rss":
        return RSSSource(feeds=parse_feed_list(settings.rss_feeds), timeout=settings.request_timeout)
    return JsonApiSource(
        endpoint=settings.source_url,
        records_path=settings.source_records_path or None,
        timeout=settings.request_timeout,
    )


def build_sink(settings: IngestSettings):
    if settings.sink_kind == "csv":
        return CsvSink(settings.csv_path, settings.key_fields, columns=settings.csv_columns or None)
    try:
        ensure_postgres_schema(settings.pg_dsn, settings.pg_table)
    except psycopg.Error as e:
        # Cycles will report the sink as unavailable until the database is back.
        logger.warning(f"Could not ensure Postgres schema: {e}")
    return PostgresSink(
        settings.pg_dsn,
        settings.key_fields,
        table=settings.pg_table,
        statement_timeout_ms=int(settings.request_timeout * 1000),
    )


def build_notifier(settings: IngestSettings) -> CompositeNotifier:
    always: list = [LogNotifier()]
    if settings.report_dir:
        always.append(ReportFileNotifier(settings.report_dir))

    channels: list = []
    if settings.discord_webhook_url:
        channels.append(DiscordNotifier(settings.discord_webhook_url, timeout=settings.request_timeout))
    if settings.telegram_bot_token:
        channels.append(
            TelegramNotifier(settings.telegram_bot_token, settings.telegram_chat_id, timeout=settings.request_timeout)
        )
    return CompositeNotifier(channels, always=always, only_problems=settings.notify_on == "problems")


def build_orchestrator(settings: IngestSettings) -> RunOrchestrator:
    sink = build_sink(settings)
    return RunOrchestrator(
        build_source(settings),
        sink,
        sink,
        key_fields=settings.key_fields,
        batch_size=settings.batch_size,
        max_write_attempts=settings.max_write_attempts,
        retry_base_delay=settings.retry_base_delay,
        retry_max_delay=settings.retry_max_delay,
        cycle_timeout=settings.cycle_timeout,
        parallel_reads=settings.parallel_reads,
        source_params=settings.source_params,
        notifier=build_notifier(settings),
    )


def run_once(orchestrator: RunOrchestrator) -> CycleResult:
    result = orchestrator.run_cycle()
    print(f"[ingest] {result.summary()}")
    return result


def install_signal_handlers(orchestrator: RunOrchestrator) -> threading.Event:
    """Route SIGINT/SIGTERM to a graceful cancel; the returned event is set on the first signal."""
    stop_requested = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, finishing current batch and shutting down...")
        stop_requested.set()
        orchestrator.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    return stop_requested


def run_scheduled(orchestrator: RunOrchestrator, minutes: int, stop_requested: threading.Event) -> None:
    schedule.every(minutes).minutes.do(orchestrator.run_cycle)
    logger.info(f"Scheduled ingestion every {minutes} minute(s); running first cycle now")
    if not stop_requested.is_set():
        orchestrator.run_cycle()

    while not stop_requested.is_set():
        schedule.run_pending()
        time.sleep(1)
    schedule.clear()
    logger.info("Graceful shutdown completed")


def main() -> int:
    configure_logging()
    try:
        settings = IngestSettings.from_env()
    except InvalidConfiguration as e:
        logger.error(f"Configuration error:\n{e}")
        return 2

    lock = ProcessLock(settings.lock_file) if settings.lock_file else None
    if lock is not None and not lock.acquire():
        logger.error("Another ingestion worker holds the lock. Exiting.")
        return 1

    try:
        try:
            orchestrator = build_orchestrator(settings)
        except InvalidConfiguration as e:
            logger.error(f"Configuration error: {e}")
            return 2

        stop_requested = install_signal_handlers(orchestrator)
        mode = (os.environ.get("INGEST_MODE") or "once").lower().strip()
        if mode in ("scheduled", "daemon"):
            run_scheduled(orchestrator, settings.schedule_minutes, stop_requested)
            return 0

        result = run_once(orchestrator)
        return 0 if result.status in (CycleStatus.SUCCESS, CycleStatus.SKIPPED) else 1
    finally:
        if lock is not None:
            lock.release()


if __name__ == "__main__":
    raise SystemExit(main())
