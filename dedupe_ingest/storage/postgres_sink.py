"""Postgres-backed sink: reads existing identity keys and appends new records.

This is intentionally lightweight (psycopg + SQL) to keep control and transparency.
Each batch is one transaction; rows whose identity key already exists are skipped
by the unique constraint, so a record that became visible after the cycle's
snapshot read is still never duplicated.
"""

from __future__ import annotations

import json
import logging
from functools import partial
from typing import List, Sequence, Set

import psycopg
from psycopg import sql

from dedupe_ingest.errors import PermanentWriteError, RetryableWriteError, SinkUnavailable
from dedupe_ingest.ingestion.identity import derive_identity_key
from dedupe_ingest.ingestion.record_types import HasFields, record_fields, record_source
from dedupe_ingest.storage.postgres_schema import DEFAULT_TABLE, validate_table_name

logger = logging.getLogger(__name__)

_dumps = partial(json.dumps, default=str)


class PostgresSink:
    def __init__(
        self,
        pg_dsn: str,
        key_fields: Sequence[str],
        *,
        table: str = DEFAULT_TABLE,
        connect_timeout: int = 10,
        statement_timeout_ms: int = 30_000,
    ):
        self.pg_dsn = pg_dsn
        self.key_fields = list(key_fields)
        self.table = validate_table_name(table)
        self.connect_timeout = connect_timeout
        self.statement_timeout_ms = statement_timeout_ms

    def _connect(self, **kwargs):
        return psycopg.connect(
            self.pg_dsn,
            connect_timeout=self.connect_timeout,
            options=f"-c statement_timeout={int(self.statement_timeout_ms)}",
            **kwargs,
        )

    def read_existing_keys(self) -> Set[str]:
        query = sql.SQL("SELECT identity_key FROM {table}").format(table=sql.Identifier(self.table))
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(query)
                    rows = cur.fetchall()
        except psycopg.Error as e:
            raise SinkUnavailable(f"failed to read identity keys from {self.table}: {e}") from e
        keys = {str(row[0]) for row in rows}
        logger.debug(f"Loaded {len(keys)} existing keys from {self.table}")
        return keys

    def append_batch(self, records: List[HasFields]) -> int:
        if not records:
            return 0
        try:
            params = [
                {
                    "identity_key": derive_identity_key(record, self.key_fields),
                    "fields": _dumps(record_fields(record)),
                    "ingestion_source": record_source(record),
                }
                for record in records
            ]
        except (TypeError, ValueError) as e:
            raise PermanentWriteError(f"batch could not be serialized: {e}", cause=e) from e

        stmt = sql.SQL(
            """
            INSERT INTO {table} (identity_key, fields, ingestion_source)
            VALUES (%(identity_key)s, %(fields)s::jsonb, %(ingestion_source)s)
            ON CONFLICT (identity_key) DO NOTHING
            """
        ).format(table=sql.Identifier(self.table))

        try:
            # Leaving the block commits; an exception rolls the whole batch back.
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.executemany(stmt, params)
                    inserted = cur.rowcount
        except psycopg.OperationalError as e:
            raise RetryableWriteError(f"transient Postgres error: {e}", cause=e) from e
        except psycopg.Error as e:
            raise PermanentWriteError(f"Postgres rejected batch: {e}", cause=e) from e

        # rowcount sums every execution; rows skipped by ON CONFLICT are not counted
        if inserted < 0:
            return len(params)
        if inserted < len(params):
            logger.info(f"{len(params) - inserted} of {len(params)} rows already present in {self.table}")
        return inserted
