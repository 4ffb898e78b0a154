"""Postgres schema management for the record sink.

Schema creation is idempotent (CREATE IF NOT EXISTS), so every worker start can
call `ensure_postgres_schema` safely.
"""

from __future__ import annotations

import re
from typing import List

import psycopg
from psycopg import sql

from dedupe_ingest.errors import InvalidConfiguration


DEFAULT_TABLE = "ingested_records"

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_table_name(table: str) -> str:
    if not table or not _TABLE_NAME_RE.match(table):
        raise InvalidConfiguration(f"invalid Postgres table name: {table!r}")
    return table


def schema_statements(table: str = DEFAULT_TABLE) -> List[sql.Composed]:
    validate_table_name(table)
    ident = sql.Identifier(table)
    return [
        sql.SQL(
            """
            CREATE TABLE IF NOT EXISTS {table} (
              id BIGSERIAL PRIMARY KEY,
              identity_key TEXT NOT NULL UNIQUE,
              fields JSONB NOT NULL,
              ingestion_source TEXT,
              created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
            """
        ).format(table=ident),
        # Backward-compatible column adds (safe if table already exists)
        sql.SQL("ALTER TABLE {table} ADD COLUMN IF NOT EXISTS ingestion_source TEXT;").format(table=ident),
        sql.SQL("CREATE INDEX IF NOT EXISTS {index} ON {table} (created_at DESC);").format(
            index=sql.Identifier(f"idx_{table}_created_at"),
            table=ident,
        ),
    ]


def ensure_postgres_schema(pg_dsn: str, table: str = DEFAULT_TABLE, *, connect_timeout: int = 10) -> None:
    """Create the sink table and indexes if they do not exist yet."""
    with psycopg.connect(pg_dsn, autocommit=True, connect_timeout=connect_timeout) as conn:
        with conn.cursor() as cur:
            for stmt in schema_statements(table):
                cur.execute(stmt)
