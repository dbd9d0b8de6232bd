"""Startup migration and audit helpers for the insight pipeline."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import psycopg2

from data_store import resolve_conn_str

log = logging.getLogger("pipeline.migrations")

SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS metrics (
        id          SERIAL PRIMARY KEY,
        user_id     INTEGER NOT NULL,
        name        TEXT NOT NULL,
        type        TEXT NOT NULL,
        config      JSONB,
        category    TEXT,
        is_active   BOOLEAN NOT NULL DEFAULT TRUE,
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entries (
        id          SERIAL PRIMARY KEY,
        user_id     INTEGER NOT NULL,
        metric_id   INTEGER NOT NULL REFERENCES metrics(id),
        value       JSONB NOT NULL,
        date        DATE NOT NULL,
        time        TIME,
        notes       TEXT,
        tags        TEXT[] NOT NULL DEFAULT '{}',
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS insights (
        id          SERIAL PRIMARY KEY,
        user_id     INTEGER NOT NULL,
        type        TEXT NOT NULL,
        data        JSONB NOT NULL,
        confidence  DOUBLE PRECISION NOT NULL
                    CHECK (confidence >= 0 AND confidence <= 1),
        date_range  JSONB,
        is_active   BOOLEAN NOT NULL DEFAULT TRUE,
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_metrics_user ON metrics(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_entries_user_date ON entries(user_id, date)",
    "CREATE INDEX IF NOT EXISTS idx_entries_metric ON entries(metric_id)",
    "CREATE INDEX IF NOT EXISTS idx_insights_user_time ON insights(user_id, inserted_at DESC)",
]

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "metrics": ["id", "user_id", "name", "type"],
    "entries": ["user_id", "metric_id", "value", "date", "time", "tags"],
    "insights": ["user_id", "type", "data", "confidence", "date_range", "is_active"],
}


def ensure_startup_schema(conn_str: str | None = None) -> None:
    """Run idempotent startup migrations before pipeline execution."""
    cs = resolve_conn_str(conn_str)
    if not cs:
        raise RuntimeError("POSTGRES_CONNECTION_STRING (or DATABASE_URL) is not configured")

    conn = psycopg2.connect(cs)
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            for stmt in SCHEMA_SQL:
                cur.execute(stmt)
    finally:
        conn.close()

    log.info("Startup migrations completed.")


def schema_audit(conn_str: str | None = None) -> Dict[str, Any]:
    """Return table/column audit data for runtime inspection."""
    cs = resolve_conn_str(conn_str)
    if not cs:
        return {
            "ok": False,
            "error": "POSTGRES_CONNECTION_STRING (or DATABASE_URL) is not configured",
            "tables": {},
            "missing_tables": [],
        }

    conn = psycopg2.connect(cs)
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT table_name, column_name
                FROM information_schema.columns
                WHERE table_schema = 'public' AND table_name = ANY(%s)
                """,
                (list(REQUIRED_COLUMNS),),
            )
            rows = cur.fetchall()
    finally:
        conn.close()

    present: Dict[str, set] = {}
    for table, column in rows:
        present.setdefault(table, set()).add(column)

    tables: Dict[str, Any] = {}
    missing_tables: List[str] = []
    for table, columns in REQUIRED_COLUMNS.items():
        if table not in present:
            missing_tables.append(table)
            tables[table] = {"exists": False, "missing_columns": list(columns)}
            continue
        missing_cols = [c for c in columns if c not in present[table]]
        tables[table] = {"exists": True, "missing_columns": missing_cols}

    ok = not missing_tables and all(not t["missing_columns"] for t in tables.values())
    return {"ok": ok, "tables": tables, "missing_tables": missing_tables}
