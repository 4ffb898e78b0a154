"""Diff a candidate snapshot against the keys already present in the sink."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, List, Sequence

from dedupe_ingest.ingestion.identity import derive_identity_key
from dedupe_ingest.ingestion.record_types import HasFields


@dataclass(frozen=True)
class DiffResult:
    """New records (input order kept) plus what was dropped and why."""

    new_records: List[HasFields] = field(default_factory=list)
    new_keys: List[str] = field(default_factory=list)
    skipped_existing: int = 0
    skipped_in_batch: int = 0

    @property
    def duplicates_skipped(self) -> int:
        return self.skipped_existing + self.skipped_in_batch


def partition_candidates(
    candidates: Sequence[HasFields],
    existing_keys: AbstractSet[str],
    key_fields: Sequence[str],
) -> DiffResult:
    """Split candidates into new records and duplicates.

    First occurrence wins when the snapshot itself repeats a key. `existing_keys`
    is never mutated.
    """
    accepted: set = set()
    new_records: List[HasFields] = []
    new_keys: List[str] = []
    skipped_existing = 0
    skipped_in_batch = 0

    for record in candidates:
        key = derive_identity_key(record, key_fields)
        if key in existing_keys:
            skipped_existing += 1
            continue
        if key in accepted:
            skipped_in_batch += 1
            continue
        accepted.add(key)
        new_records.append(record)
        new_keys.append(key)

    return DiffResult(
        new_records=new_records,
        new_keys=new_keys,
        skipped_existing=skipped_existing,
        skipped_in_batch=skipped_in_batch,
    )


def diff(
    candidates: Sequence[HasFields],
    existing_keys: AbstractSet[str],
    key_fields: Sequence[str],
) -> List[HasFields]:
    """Return candidates whose identity key is absent from `existing_keys`."""
    return partition_candidates(candidates, existing_keys, key_fields).new_records
