"""Spreadsheet-style CSV sink.

The header row is fixed by the first write: the configured columns, or the key
fields followed by every other field seen in that first batch. Later fields
outside the header are dropped, the same way a sheet with fixed columns would
ignore them. Key fields are always part of the header, otherwise stored rows
could not be recognized on the next read.
"""

from __future__ import annotations

import csv
import logging
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from dedupe_ingest.errors import InvalidConfiguration, PermanentWriteError, SinkUnavailable
from dedupe_ingest.ingestion.identity import derive_identity_key
from dedupe_ingest.ingestion.record_types import HasFields, record_fields

logger = logging.getLogger(__name__)


class CsvSink:
    def __init__(self, path: Union[str, Path], key_fields: Sequence[str], *, columns: Optional[Sequence[str]] = None):
        self.path = Path(path)
        self.key_fields = list(key_fields)
        self.columns = list(columns) if columns else None
        if self.columns:
            missing = [name for name in self.key_fields if name not in self.columns]
            if missing:
                raise InvalidConfiguration(f"CSV columns must include every key field; missing {missing}")

    def _missing_key_columns(self, header: Sequence[str]) -> List[str]:
        return [name for name in self.key_fields if name not in header]

    def read_existing_keys(self) -> Set[str]:
        if not self.path.exists():
            return set()
        try:
            with self.path.open("r", newline="", encoding="utf-8") as handle:
                reader = csv.DictReader(handle)
                if reader.fieldnames is None:
                    return set()
                missing = self._missing_key_columns(reader.fieldnames)
                if missing:
                    raise SinkUnavailable(f"{self.path} header has no column for key field(s) {missing}")
                return {derive_identity_key(row, self.key_fields) for row in reader}
        except (OSError, csv.Error, UnicodeDecodeError) as e:
            raise SinkUnavailable(f"failed to read {self.path}: {e}") from e

    def read_header(self) -> List[str]:
        if not self.path.exists() or self.path.stat().st_size == 0:
            return []
        with self.path.open("r", newline="", encoding="utf-8") as handle:
            return next(csv.reader(handle), [])

    def _new_header(self, rows: List[Dict[str, Any]]) -> List[str]:
        if self.columns:
            return list(self.columns)
        header = list(self.key_fields)
        for row in rows:
            for name in row:
                if name not in header:
                    header.append(name)
        return header

    def append_batch(self, records: List[HasFields]) -> int:
        if not records:
            return 0
        try:
            rows = [_row(record) for record in records]
            header = self.read_header()
            write_header = not header
            if write_header:
                header = self._new_header(rows)
            missing = self._missing_key_columns(header)
            if missing:
                raise PermanentWriteError(f"{self.path} header has no column for key field(s) {missing}")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=header, extrasaction="ignore")
                if write_header:
                    writer.writeheader()
                writer.writerows(rows)
                handle.flush()
                os.fsync(handle.fileno())
        except (OSError, csv.Error, TypeError) as e:
            raise PermanentWriteError(f"failed to append to {self.path}: {e}", cause=e) from e
        logger.debug(f"Appended {len(records)} rows to {self.path}")
        return len(rows)


def _row(record: HasFields) -> Dict[str, Any]:
    # ISO dates so keys derived from the written cells match the candidate's key
    row = {}
    for name, value in record_fields(record).items():
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        row[name] = value
    return row
