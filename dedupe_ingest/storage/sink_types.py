"""Collaborator protocols for the durable sink.

Storage mechanics (Postgres table, CSV sheet, ...) live behind these two
methods; the pipeline never touches them directly.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Set

from dedupe_ingest.ingestion.record_types import HasFields


class SinkReader(Protocol):
    def read_existing_keys(self) -> Set[str]:
        """
        Load the identity keys already present in the sink.

        Raises:
            SinkUnavailable: the sink state could not be read in full.
        """
        ...


class SinkWriter(Protocol):
    def append_batch(self, records: List[HasFields]) -> Optional[int]:
        """
        Append one batch of new records.

        Returns the number of records actually stored, which can be lower than
        `len(records)` when the sink itself drops rows it already holds. `None`
        means the whole batch was stored.

        Raises:
            RetryableWriteError: transient failure; the same batch may be retried.
            PermanentWriteError: the batch was rejected.
        """
        ...
