"""One ingestion cycle: fetch -> read sink keys -> diff -> batch -> append -> report.

Cycles are not reentrant. Fetch and sink read are all-or-nothing: if either
fails the cycle reports `failed` before any write is attempted, since diffing
against partial sink state risks mass duplication.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from datetime import datetime, timezone
from enum import Enum
from typing import AbstractSet, Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from dedupe_ingest.errors import InvalidConfiguration, SinkUnavailable, SourceError, SourceTimeout, SourceUnavailable
from dedupe_ingest.ingestion.record_types import CandidateRecord
from dedupe_ingest.pipeline.append import AppendCoordinator
from dedupe_ingest.pipeline.batching import batch, validate_batch_size
from dedupe_ingest.pipeline.diff import partition_candidates
from dedupe_ingest.pipeline.locking import InFlightGuard
from dedupe_ingest.pipeline.results import CycleResult, CycleStatus
from dedupe_ingest.storage.sink_types import SinkReader, SinkWriter

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    READING = "reading"
    DIFFING = "diffing"
    BATCHING = "batching"
    APPENDING = "appending"
    REPORTING = "reporting"


class UpstreamSource(Protocol):
    def fetch(self, params: Optional[Mapping[str, Any]] = None) -> List[CandidateRecord]:
        ...


class Notifier(Protocol):
    def notify(self, result: CycleResult) -> None:
        ...


class RunOrchestrator:
    """Runs ingestion cycles against one source and one sink.

    Scheduled and on-demand triggers both call `run_cycle`. A trigger that
    arrives while a cycle is in flight gets a `skipped` result and does nothing.
    """

    def __init__(
        self,
        source: UpstreamSource,
        reader: SinkReader,
        writer: SinkWriter,
        *,
        key_fields: Sequence[str],
        batch_size: int = 50,
        max_write_attempts: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 60.0,
        cycle_timeout: Optional[float] = None,
        parallel_reads: bool = True,
        source_params: Optional[Mapping[str, Any]] = None,
        notifier: Optional[Notifier] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if isinstance(key_fields, str) or not key_fields or not all(isinstance(f, str) and f for f in key_fields):
            raise InvalidConfiguration(f"key_fields must be a non-empty list of field names, got {key_fields!r}")
        if cycle_timeout is not None and not (math.isfinite(cycle_timeout) and cycle_timeout > 0):
            raise InvalidConfiguration(f"cycle_timeout must be positive, got {cycle_timeout!r}")

        self.source = source
        self.reader = reader
        self.writer = writer
        self.key_fields = list(key_fields)
        self.batch_size = validate_batch_size(batch_size)
        self.cycle_timeout = cycle_timeout
        self.parallel_reads = parallel_reads
        self.source_params: Dict[str, Any] = dict(source_params or {})
        self.notifier = notifier
        self._clock = clock
        self._coordinator = AppendCoordinator(
            writer,
            max_attempts=max_write_attempts,
            base_delay=retry_base_delay,
            max_delay=retry_max_delay,
            sleep=sleep,
        )
        self._guard = InFlightGuard()
        self._cancel = threading.Event()
        self.state = CycleState.IDLE

    @property
    def busy(self) -> bool:
        return self._guard.busy

    def cancel(self) -> None:
        """Ask the in-flight cycle to stop after the batch currently being appended."""
        logger.info("Cancellation requested")
        self._cancel.set()

    def run_cycle(self) -> CycleResult:
        if not self._guard.try_enter():
            logger.warning("Ingestion cycle already in flight; skipping this trigger")
            now = datetime.now(timezone.utc)
            return CycleResult(
                cycle_id=uuid.uuid4().hex[:12],
                status=CycleStatus.SKIPPED,
                started_at=now,
                finished_at=now,
                error="another cycle is already in flight",
            )
        try:
            return self._run_guarded()
        finally:
            self._set_state(CycleState.IDLE)
            self._guard.exit()

    def _run_guarded(self) -> CycleResult:
        self._cancel.clear()
        result = CycleResult(cycle_id=uuid.uuid4().hex[:12])
        deadline = self._clock() + self.cycle_timeout if self.cycle_timeout else None

        logger.info("=" * 60)
        logger.info(f"Starting ingestion cycle {result.cycle_id} (key_fields={self.key_fields})")

        try:
            candidates, existing_keys = self._read_inputs(deadline)
        except (SourceError, SinkUnavailable) as e:
            result.status = CycleStatus.FAILED
            result.error = f"{type(e).__name__}: {e}"
            logger.error(f"Cycle {result.cycle_id} aborted before any write: {result.error}")
            return self._report(result)

        result.fetched = len(candidates)

        try:
            self._set_state(CycleState.DIFFING)
            diffed = partition_candidates(candidates, existing_keys, self.key_fields)
            result.skipped_existing = diffed.skipped_existing
            result.skipped_in_batch = diffed.skipped_in_batch

            self._set_state(CycleState.BATCHING)
            batches = batch(diffed.new_records, self.batch_size)
        except Exception as e:
            logger.exception(f"Cycle {result.cycle_id} failed while preparing batches")
            result.status = CycleStatus.FAILED
            result.error = f"{type(e).__name__}: {e}"
            return self._report(result)

        logger.info(
            f"fetched={result.fetched} existing_in_sink={len(existing_keys)} "
            f"new={len(diffed.new_records)} skipped={result.duplicates_skipped} batches={len(batches)}"
        )

        self._set_state(CycleState.APPENDING)
        outcome = self._coordinator.append_all(batches, should_stop=lambda: self._should_stop(result, deadline))
        result.apply_append_outcome(outcome)
        return self._report(result)

    def _read_inputs(self, deadline: Optional[float]) -> Tuple[List[CandidateRecord], AbstractSet[str]]:
        if not self.parallel_reads:
            self._set_state(CycleState.FETCHING)
            candidates = self._fetch()
            if self._expired(deadline):
                raise SourceTimeout("upstream fetch exceeded the cycle timeout")
            self._set_state(CycleState.READING)
            existing_keys = self._read_keys()
            if self._expired(deadline):
                raise SinkUnavailable("sink read exceeded the cycle timeout")
            return candidates, existing_keys

        # Independent reads; nothing is written until both have completed.
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ingest-read")
        fetch_future = executor.submit(self._fetch)
        read_future = executor.submit(self._read_keys)
        try:
            self._set_state(CycleState.FETCHING)
            candidates = self._wait(fetch_future, deadline, SourceTimeout("upstream fetch exceeded the cycle timeout"))
            self._set_state(CycleState.READING)
            existing_keys = self._wait(read_future, deadline, SinkUnavailable("sink read exceeded the cycle timeout"))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            # Running calls cannot be interrupted; their results are discarded.
            for label, future in (("upstream fetch", fetch_future), ("sink read", read_future)):
                if not future.done():
                    logger.warning(f"Abandoning {label} still running; its result will be discarded")
        return candidates, existing_keys

    def _fetch(self) -> List[CandidateRecord]:
        try:
            return list(self.source.fetch(self.source_params))
        except SourceError:
            raise
        except Exception as e:
            raise SourceUnavailable(f"{type(e).__name__}: {e}") from e

    def _read_keys(self) -> AbstractSet[str]:
        try:
            return frozenset(self.reader.read_existing_keys())
        except SinkUnavailable:
            raise
        except Exception as e:
            raise SinkUnavailable(f"{type(e).__name__}: {e}") from e

    def _wait(self, future: Future, deadline: Optional[float], timeout_error: Exception):
        remaining = None if deadline is None else max(0.0, deadline - self._clock())
        try:
            return future.result(timeout=remaining)
        except FuturesTimeout:
            raise timeout_error

    def _expired(self, deadline: Optional[float]) -> bool:
        return deadline is not None and self._clock() >= deadline

    def _should_stop(self, result: CycleResult, deadline: Optional[float]) -> bool:
        if self._cancel.is_set():
            result.cancelled = True
            return True
        if self._expired(deadline):
            result.timed_out = True
            return True
        return False

    def _report(self, result: CycleResult) -> CycleResult:
        self._set_state(CycleState.REPORTING)
        result.finished_at = datetime.now(timezone.utc)

        message = f"Cycle {result.cycle_id} finished in {result.duration_seconds:.1f}s: {result.summary()}"
        if result.status == CycleStatus.SUCCESS:
            logger.info(message)
        elif result.status == CycleStatus.PARTIAL:
            logger.warning(message)
        else:
            logger.error(message)

        if self.notifier is not None:
            try:
                self.notifier.notify(result)
            except Exception as e:
                logger.error(f"Notifier failed for cycle {result.cycle_id}: {e}")
        logger.info("=" * 60)
        return result

    def _set_state(self, state: CycleState) -> None:
        if state != self.state:
            logger.debug(f"state {self.state.value} -> {state.value}")
        self.state = state
