"""Worker configuration loaded from the environment (and `.env` via python-dotenv)."""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from dedupe_ingest.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("json", "rss")
SINK_KINDS = ("postgres", "csv")
NOTIFY_MODES = ("always", "problems")

DEFAULT_PG_DSN = "dbname=dedupe_ingest user=ingest password=ingestpass host=localhost port=5432"


def _split_list(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, cast, errors: List[str]):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError):
        errors.append(f"{name} must be a number (got {raw!r})")
        return cast(default)


@dataclass
class IngestSettings:
    """Validated settings for one ingestion pipeline"""

    key_fields: List[str] = field(default_factory=lambda: ["name"])
    batch_size: int = 50

    # Write retries
    max_write_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0

    # Timeouts (seconds)
    request_timeout: float = 30.0
    cycle_timeout: float = 900.0
    parallel_reads: bool = True

    # Scheduling
    schedule_minutes: int = 30
    lock_file: str = ""

    # Upstream source
    source_kind: str = "json"
    source_url: str = ""
    source_records_path: str = ""
    source_params: Dict[str, Any] = field(default_factory=dict)
    rss_feeds: str = ""

    # Sink
    sink_kind: str = "postgres"
    pg_dsn: str = DEFAULT_PG_DSN
    pg_table: str = "ingested_records"
    csv_path: str = "data/records.csv"
    csv_columns: List[str] = field(default_factory=list)

    # Reporting / notifications
    report_dir: str = ""
    discord_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    notify_on: str = "problems"

    @classmethod
    def from_env(cls) -> "IngestSettings":
        """Load and validate configuration from environment variables"""
        load_dotenv()
        errors: List[str] = []

        raw_params = os.getenv("SOURCE_PARAMS", "").strip()
        source_params: Dict[str, Any] = {}
        if raw_params:
            try:
                source_params = json.loads(raw_params)
            except ValueError as e:
                errors.append(f"SOURCE_PARAMS is not valid JSON: {e}")
            else:
                if not isinstance(source_params, dict):
                    errors.append("SOURCE_PARAMS must be a JSON object")
                    source_params = {}

        settings = cls(
            key_fields=_split_list(os.getenv("KEY_FIELDS", "name")),
            batch_size=_env_number("BATCH_SIZE", "50", int, errors),
            max_write_attempts=_env_number("MAX_WRITE_ATTEMPTS", "3", int, errors),
            retry_base_delay=_env_number("RETRY_BASE_DELAY", "1.0", float, errors),
            retry_max_delay=_env_number("RETRY_MAX_DELAY", "60.0", float, errors),
            request_timeout=_env_number("REQUEST_TIMEOUT", "30", float, errors),
            cycle_timeout=_env_number("CYCLE_TIMEOUT", "900", float, errors),
            parallel_reads=_env_bool("PARALLEL_READS", "true"),
            schedule_minutes=_env_number("SCHEDULE_MINUTES", "30", int, errors),
            lock_file=os.getenv("LOCK_FILE", "").strip(),
            source_kind=os.getenv("SOURCE_KIND", "json").strip().lower(),
            source_url=os.getenv("SOURCE_URL", "").strip(),
            source_records_path=os.getenv("SOURCE_RECORDS_PATH", "").strip(),
            source_params=source_params,
            rss_feeds=os.getenv("RSS_FEEDS", "").strip(),
            sink_kind=os.getenv("SINK_KIND", "postgres").strip().lower(),
            pg_dsn=os.getenv("PG_DSN", DEFAULT_PG_DSN),
            pg_table=os.getenv("PG_TABLE", "ingested_records").strip(),
            csv_path=os.getenv("CSV_PATH", "data/records.csv").strip(),
            csv_columns=_split_list(os.getenv("CSV_COLUMNS", "")),
            report_dir=os.getenv("REPORT_DIR", "").strip(),
            discord_webhook_url=os.getenv("DISCORD_WEBHOOK_URL", "").strip(),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", "").strip(),
            notify_on=os.getenv("NOTIFY_ON", "problems").strip().lower(),
        )
        settings._validate(errors)
        return settings

    def _validate(self, errors: List[str]) -> None:
        """Validate configuration values; raises InvalidConfiguration listing every problem"""
        errors = list(errors)

        if not self.key_fields:
            errors.append("KEY_FIELDS must name at least one field")
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size <= 0:
            errors.append("BATCH_SIZE must be a positive integer")
        if self.max_write_attempts < 1:
            errors.append("MAX_WRITE_ATTEMPTS must be at least 1")
        if not all(math.isfinite(d) and d >= 0 for d in (self.retry_base_delay, self.retry_max_delay)):
            errors.append("RETRY_BASE_DELAY and RETRY_MAX_DELAY must be finite and not negative")
        if not (math.isfinite(self.request_timeout) and self.request_timeout > 0):
            errors.append("REQUEST_TIMEOUT must be a positive finite number")
        if not (math.isfinite(self.cycle_timeout) and self.cycle_timeout > 0):
            errors.append("CYCLE_TIMEOUT must be a positive finite number")
        if self.schedule_minutes < 1:
            errors.append("SCHEDULE_MINUTES must be at least 1")

        if self.source_kind not in SOURCE_KINDS:
            errors.append(f"SOURCE_KIND must be one of {', '.join(SOURCE_KINDS)}")
        elif self.source_kind == "json" and not self.source_url:
            errors.append("SOURCE_URL is required when SOURCE_KIND=json")
        elif self.source_kind == "rss" and not self.rss_feeds:
            errors.append("RSS_FEEDS is required when SOURCE_KIND=rss")

        if self.sink_kind not in SINK_KINDS:
            errors.append(f"SINK_KIND must be one of {', '.join(SINK_KINDS)}")
        elif self.sink_kind == "postgres" and not self.pg_dsn:
            errors.append("PG_DSN is required when SINK_KIND=postgres")
        elif self.sink_kind == "csv" and not self.csv_path:
            errors.append("CSV_PATH is required when SINK_KIND=csv")
        elif self.sink_kind == "csv" and self.csv_columns:
            missing = [name for name in self.key_fields if name not in self.csv_columns]
            if missing:
                errors.append(f"CSV_COLUMNS must include every KEY_FIELDS entry (missing {', '.join(missing)})")

        if self.telegram_bot_token and not self.telegram_chat_id:
            errors.append("TELEGRAM_BOT_TOKEN set but TELEGRAM_CHAT_ID missing")
        elif self.telegram_bot_token and self.telegram_bot_token.count(":") != 1:
            errors.append("Invalid Telegram bot token format")
        if self.discord_webhook_url and not self.discord_webhook_url.startswith("https://"):
            errors.append("DISCORD_WEBHOOK_URL must be an https URL")
        if self.notify_on not in NOTIFY_MODES:
            errors.append(f"NOTIFY_ON must be one of {', '.join(NOTIFY_MODES)}")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise InvalidConfiguration(error_msg)

        logger.info(
            f"Configuration validated: source={self.source_kind} sink={self.sink_kind} "
            f"key_fields={self.key_fields} batch_size={self.batch_size}"
        )
