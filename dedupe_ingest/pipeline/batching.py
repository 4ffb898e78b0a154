from __future__ import annotations

from typing import List, Sequence, TypeVar

from dedupe_ingest.errors import InvalidConfiguration

T = TypeVar("T")


def validate_batch_size(size: object) -> int:
    # bool is an int subclass; True is not a batch size
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise InvalidConfiguration(f"batch size must be a positive integer, got {size!r}")
    return size


def batch(records: Sequence[T], size: int) -> List[List[T]]:
    """Split `records` in order into chunks of `size` (the last may be shorter)."""
    size = validate_batch_size(size)
    return [list(records[i : i + size]) for i in range(0, len(records), size)]
