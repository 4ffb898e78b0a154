"""Sequential, partial-failure-tolerant batch writes against a sink."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional, Sequence, Tuple

from dedupe_ingest.errors import InvalidConfiguration, PermanentWriteError, RetryableWriteError
from dedupe_ingest.ingestion.record_types import HasFields
from dedupe_ingest.pipeline.results import AppendOutcome, BatchFailure
from dedupe_ingest.pipeline.retry import retry_with_backoff
from dedupe_ingest.storage.sink_types import SinkWriter

logger = logging.getLogger(__name__)


class AppendCoordinator:
    """Drives batch writes one at a time.

    A failed batch never aborts the remaining ones. Retryable failures are retried
    with backoff up to `max_attempts` total attempts, then count as permanent for
    this cycle.
    """

    def __init__(
        self,
        writer: SinkWriter,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if isinstance(max_attempts, bool) or not isinstance(max_attempts, int) or max_attempts < 1:
            raise InvalidConfiguration(f"max_attempts must be >= 1, got {max_attempts!r}")
        if not all(math.isfinite(d) and d >= 0 for d in (base_delay, max_delay)):
            raise InvalidConfiguration("retry delays must be finite and not negative")
        self.writer = writer
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def append_all(
        self,
        batches: Sequence[Sequence[HasFields]],
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> AppendOutcome:
        outcome = AppendOutcome(batches_total=len(batches))

        for index, records in enumerate(batches):
            if should_stop is not None and should_stop():
                outcome.stopped = True
                for remaining in batches[index:]:
                    outcome.not_attempted.extend(remaining)
                logger.warning(
                    f"Stopping before batch {index + 1}/{len(batches)}; "
                    f"{outcome.batches_not_attempted} batch(es) not attempted"
                )
                break

            outcome.batches_attempted += 1
            failure, stored = self._append_one(index, records)
            if failure is None:
                outcome.batches_succeeded += 1
                outcome.appended += stored
                if stored < len(records):
                    outcome.skipped_on_write += len(records) - stored
                    logger.info(
                        f"Batch {index + 1}/{len(batches)} appended ({stored} of {len(records)} records; "
                        f"{len(records) - stored} already present in sink)"
                    )
                else:
                    logger.info(f"Batch {index + 1}/{len(batches)} appended ({stored} records)")
            else:
                outcome.failures.append(failure)
                outcome.unconfirmed.extend(records)
                logger.error(
                    f"Batch {index + 1}/{len(batches)} failed after {failure.attempts} attempt(s): {failure.error}"
                )

        return outcome

    def _append_one(self, index: int, records: Sequence[HasFields]) -> Tuple[Optional[BatchFailure], int]:
        """Write one batch; returns (failure, records stored)."""
        attempts = 0

        def append_batch() -> Optional[int]:
            nonlocal attempts
            attempts += 1
            return self.writer.append_batch(list(records))

        write = retry_with_backoff(
            max_retries=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            retry_on=(RetryableWriteError,),
            sleep=self._sleep,
        )(append_batch)

        try:
            stored = write()
        except RetryableWriteError as e:
            return BatchFailure(batch_index=index, size=len(records), attempts=attempts, error=str(e), retryable=True), 0
        except PermanentWriteError as e:
            return BatchFailure(batch_index=index, size=len(records), attempts=attempts, error=str(e)), 0
        except Exception as e:
            # Unclassified writer errors are treated as permanent for this batch.
            logger.exception(f"Unexpected error appending batch {index + 1}")
            return BatchFailure(
                batch_index=index,
                size=len(records),
                attempts=attempts,
                error=f"{type(e).__name__}: {e}",
            ), 0
        return None, len(records) if stored is None else min(int(stored), len(records))
