"""Identity key helpers for ingestion/dedup.

Two records denote the same entity iff their identity keys are equal.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Sequence

from dedupe_ingest.ingestion.record_types import HasFields


# ASCII unit separator. str.split() treats it as whitespace, so normalization
# always removes it from segment text.
KEY_DELIMITER = "\x1f"


def normalize_segment(value: Any) -> str:
    """Normalize one field value for comparison.

    - None -> ""
    - dates/datetimes rendered as ISO strings
    - trim, collapse internal whitespace runs to a single space
    - upper-case fold
    """
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        text = value.isoformat()
    else:
        text = str(value)
    return " ".join(text.split()).upper()


def derive_identity_key(record: HasFields, key_fields: Sequence[str]) -> str:
    """Derive the identity key of `record` from the ordered `key_fields`.

    Pure and total: absent fields contribute an empty segment.
    """
    return KEY_DELIMITER.join(normalize_segment(record.get(name)) for name in key_fields)
