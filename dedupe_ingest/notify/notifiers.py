"""Notification channels for finished cycles.

The orchestrator hands every CycleResult to one notifier; these classes format
and deliver it. Channel errors are logged per channel and never change the
result.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import requests

from dedupe_ingest.contracts.cycle_report import write_cycle_report
from dedupe_ingest.pipeline.results import CycleResult, CycleStatus
from dedupe_ingest.pipeline.retry import retry_with_backoff

logger = logging.getLogger(__name__)

TELEGRAM_MAX_MESSAGE_LENGTH = 4096

_STATUS_ICONS = {
    CycleStatus.SUCCESS: "✅",
    CycleStatus.PARTIAL: "⚠️",
    CycleStatus.FAILED: "🚨",
    CycleStatus.SKIPPED: "⏭️",
}


def format_cycle_message(result: CycleResult) -> str:
    icon = _STATUS_ICONS.get(result.status, "")
    lines = [
        f"{icon} Ingestion cycle {result.cycle_id}: {result.status.value.upper()}",
        f"Fetched: {result.fetched}",
        f"Duplicates skipped: {result.duplicates_skipped} "
        f"(in sink {result.skipped_existing}, repeated in snapshot {result.skipped_in_batch})",
        f"Appended: {result.appended}",
        f"Batches: {result.batches_attempted}/{result.batches_total} attempted, {result.batches_failed} failed",
    ]
    if result.skipped_on_write:
        lines.append(f"Already in sink at write time: {result.skipped_on_write}")
    if result.batches_not_attempted:
        reason = "cancelled" if result.cancelled else "timed out" if result.timed_out else "stopped"
        lines.append(f"Not attempted: {result.batches_not_attempted} batch(es), {reason}")
    if result.unconfirmed:
        lines.append(f"Unconfirmed records: {len(result.unconfirmed)}")
    for failure in result.failures[:5]:
        lines.append(f"  batch {failure.batch_index + 1}: {failure.error}")
    if result.error:
        lines.append(f"Error: {result.error}")
    lines.append(f"Duration: {result.duration_seconds:.1f}s")
    return "\n".join(lines)


class LogNotifier:
    def notify(self, result: CycleResult) -> None:
        logger.info(format_cycle_message(result))


class ReportFileNotifier:
    """Persists each cycle report as JSON under `directory`."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def notify(self, result: CycleResult) -> None:
        path = write_cycle_report(result, self.directory)
        logger.info(f"Cycle report written to {path}")


class DiscordNotifier:
    def __init__(self, webhook_url: str, *, timeout: float = 30.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    @retry_with_backoff(
        max_retries=3,
        base_delay=2.0,
        retry_on=(requests.exceptions.ConnectionError, requests.exceptions.Timeout),
    )
    def notify(self, result: CycleResult) -> None:
        data = {
            "content": format_cycle_message(result)[:2000],
            "username": "Ingestion Monitor",
        }
        response = requests.post(self.webhook_url, json=data, timeout=self.timeout)
        response.raise_for_status()
        logger.info("Discord notification sent")


class TelegramNotifier:
    def __init__(self, bot_token: str, chat_id: str, *, timeout: float = 30.0):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    def notify(self, result: CycleResult) -> None:
        url = f"https://api.telegram.org/bot{self.bot_token}/sendMessage"
        message = format_cycle_message(result)
        if len(message) > TELEGRAM_MAX_MESSAGE_LENGTH:
            logger.warning(f"Message too long ({len(message)} chars), truncating")
            message = message[: TELEGRAM_MAX_MESSAGE_LENGTH - 20] + "\n... (truncated)"

        data = {
            "chat_id": self.chat_id,
            "text": message,
            "disable_web_page_preview": True,
        }
        try:
            response = requests.post(url, json=data, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 400:
                logger.error("Telegram bad request - check bot token and chat ID")
            elif status == 401:
                logger.error("Telegram unauthorized - check bot token")
            raise

        body = response.json()
        if not body.get("ok"):
            raise ValueError(f"Telegram API error: {body.get('description', 'Unknown error')}")
        logger.info(f"Telegram message sent to chat {self.chat_id}")


class CompositeNotifier:
    """Fans a result out to several channels.

    With `only_problems`, successful cycles (and cycles that found nothing new)
    are delivered to `always` channels only.
    """

    def __init__(
        self,
        channels: Sequence[object],
        *,
        always: Optional[Sequence[object]] = None,
        only_problems: bool = False,
    ):
        self.channels = list(channels)
        self.always = list(always or [])
        self.only_problems = only_problems

    def notify(self, result: CycleResult) -> None:
        targets: List[object] = list(self.always)
        if not self.only_problems or result.status in (CycleStatus.PARTIAL, CycleStatus.FAILED):
            targets.extend(self.channels)

        errors = []
        for channel in targets:
            name = type(channel).__name__
            try:
                channel.notify(result)
            except Exception as e:
                errors.append(f"{name}: {e}")
                logger.error(f"Failed to send {name} notification: {e}")
        if errors and len(errors) == len(targets):
            logger.error("All notification channels failed")
