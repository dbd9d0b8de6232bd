"""Tests for startup migrations and the schema audit (psycopg2 mocked)."""
import os
import sys
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pipeline.migrations import REQUIRED_COLUMNS, SCHEMA_SQL, ensure_startup_schema, schema_audit


def _conn(rows=None):
    cursor = MagicMock()
    cursor.fetchall.return_value = rows or []
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


class TestEnsureStartupSchema:

    def test_runs_every_statement(self):
        conn, cursor = _conn()
        with patch("pipeline.migrations.psycopg2.connect", return_value=conn):
            ensure_startup_schema("postgresql://x/db")
        assert cursor.execute.call_count == len(SCHEMA_SQL)
        assert conn.autocommit is True
        conn.close.assert_called_once()

    def test_requires_connection_string(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_CONNECTION_STRING", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError):
            ensure_startup_schema()


class TestSchemaAudit:

    def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("POSTGRES_CONNECTION_STRING", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        result = schema_audit()
        assert result["ok"] is False
        assert "error" in result

    def test_complete_schema(self):
        rows = [(table, col) for table, cols in REQUIRED_COLUMNS.items() for col in cols]
        conn, _ = _conn(rows)
        with patch("pipeline.migrations.psycopg2.connect", return_value=conn):
            result = schema_audit("postgresql://x/db")
        assert result == {
            "ok": True,
            "tables": {t: {"exists": True, "missing_columns": []} for t in REQUIRED_COLUMNS},
            "missing_tables": [],
        }

    def test_missing_table_and_column(self):
        rows = [("metrics", c) for c in REQUIRED_COLUMNS["metrics"]]
        rows += [("entries", c) for c in REQUIRED_COLUMNS["entries"] if c != "tags"]
        conn, _ = _conn(rows)
        with patch("pipeline.migrations.psycopg2.connect", return_value=conn):
            result = schema_audit("postgresql://x/db")
        assert result["ok"] is False
        assert result["missing_tables"] == ["insights"]
        assert result["tables"]["entries"]["missing_columns"] == ["tags"]
