"""Outcome types reported by the append coordinator and the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from dedupe_ingest.ingestion.record_types import HasFields


class CycleStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    # Trigger rejected because another cycle was already in flight.
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BatchFailure:
    batch_index: int
    size: int
    attempts: int
    error: str
    retryable: bool = False


@dataclass
class AppendOutcome:
    """What the append coordinator did with one cycle's batches."""

    appended: int = 0
    # Records in successful batches that the sink reported as already stored.
    skipped_on_write: int = 0
    batches_total: int = 0
    batches_attempted: int = 0
    batches_succeeded: int = 0
    failures: List[BatchFailure] = field(default_factory=list)
    unconfirmed: List[HasFields] = field(default_factory=list)
    not_attempted: List[HasFields] = field(default_factory=list)
    stopped: bool = False

    @property
    def batches_failed(self) -> int:
        return len(self.failures)

    @property
    def batches_not_attempted(self) -> int:
        return self.batches_total - self.batches_attempted

    @property
    def status(self) -> CycleStatus:
        if self.batches_not_attempted > 0:
            return CycleStatus.PARTIAL
        if self.batches_failed == 0:
            return CycleStatus.SUCCESS
        if self.batches_succeeded > 0:
            return CycleStatus.PARTIAL
        return CycleStatus.FAILED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CycleResult:
    """Outcome summary of one ingestion cycle, handed to the notifier."""

    cycle_id: str
    status: CycleStatus = CycleStatus.SUCCESS
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    fetched: int = 0
    skipped_existing: int = 0
    skipped_in_batch: int = 0
    appended: int = 0
    skipped_on_write: int = 0
    batches_total: int = 0
    batches_attempted: int = 0
    batches_failed: int = 0
    failures: List[BatchFailure] = field(default_factory=list)
    unconfirmed: List[HasFields] = field(default_factory=list)
    not_attempted: List[HasFields] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    timed_out: bool = False

    @property
    def duplicates_skipped(self) -> int:
        return self.skipped_existing + self.skipped_in_batch

    @property
    def batches_not_attempted(self) -> int:
        return self.batches_total - self.batches_attempted

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def apply_append_outcome(self, outcome: AppendOutcome) -> None:
        self.appended = outcome.appended
        self.skipped_on_write = outcome.skipped_on_write
        self.batches_total = outcome.batches_total
        self.batches_attempted = outcome.batches_attempted
        self.batches_failed = outcome.batches_failed
        self.failures = list(outcome.failures)
        self.unconfirmed = list(outcome.unconfirmed)
        self.not_attempted = list(outcome.not_attempted)
        self.status = outcome.status

    def summary(self) -> str:
        return (
            f"status={self.status.value} fetched={self.fetched} skipped={self.duplicates_skipped} "
            f"appended={self.appended} batches={self.batches_attempted}/{self.batches_total} "
            f"failed_batches={self.batches_failed}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_id": self.cycle_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "fetched": self.fetched,
            "duplicates_skipped": self.duplicates_skipped,
            "skipped_existing": self.skipped_existing,
            "skipped_in_batch": self.skipped_in_batch,
            "appended": self.appended,
            "skipped_on_write": self.skipped_on_write,
            "batches_total": self.batches_total,
            "batches_attempted": self.batches_attempted,
            "batches_failed": self.batches_failed,
            "batches_not_attempted": self.batches_not_attempted,
            "failures": [
                {
                    "batch_index": f.batch_index,
                    "size": f.size,
                    "attempts": f.attempts,
                    "error": f.error,
                    "retryable": f.retryable,
                }
                for f in self.failures
            ],
            "unconfirmed_count": len(self.unconfirmed),
            "not_attempted_count": len(self.not_attempted),
            "error": self.error,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
        }
