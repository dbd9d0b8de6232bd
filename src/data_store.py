"""
PostgreSQL access for the insight engine.

Reads entry snapshots for analysis and writes generated insight bundles.
Every call opens its own short-lived psycopg2 connection, so one store
can be shared by worker threads.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import psycopg2
from dotenv import load_dotenv
from psycopg2.extras import Json, RealDictCursor

from models import DateRange, MetricId, Observation

load_dotenv()

log = logging.getLogger("data_store")

INSIGHT_TYPES = {"correlation", "trend", "pattern", "recommendation", "combined"}
INSIGHT_LIST_LIMIT = 50


def resolve_conn_str(conn_str: Optional[str] = None) -> str:
    """Explicit value, then POSTGRES_CONNECTION_STRING, then DATABASE_URL.

    ``postgres://`` (Heroku style) is normalised to ``postgresql://``.
    """
    url = (conn_str or os.getenv("POSTGRES_CONNECTION_STRING") or os.getenv("DATABASE_URL") or "").strip()
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def to_jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row_to_observation(row: Dict[str, Any]) -> Observation:
    return Observation(
        metric_id=row["metric_id"],
        date=row["date"],
        time=row.get("time"),
        raw_value=row.get("value"),
        tags=frozenset(row.get("tags") or ()),
    )


class InsightStore:
    """Entry reads + insight writes against the application database."""

    def __init__(self, conn_str: Optional[str] = None):
        self.conn_str = resolve_conn_str(conn_str)

    # ─── Low-level helpers ───────────────────────────────────

    def _fetch_all(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        if not self.conn_str:
            raise RuntimeError("POSTGRES_CONNECTION_STRING is not set")
        conn = psycopg2.connect(self.conn_str)
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params or ())
                return [dict(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def _execute(self, query: str, params: Optional[tuple] = None) -> None:
        if not self.conn_str:
            raise RuntimeError("POSTGRES_CONNECTION_STRING is not set")
        conn = psycopg2.connect(self.conn_str)
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                cur.execute(query, params or ())
        finally:
            conn.close()

    def ping(self) -> bool:
        return bool(self._fetch_all("SELECT 1 AS ok"))

    # ─── Reads consumed by the engine ────────────────────────

    def load_observations_for_analytics(self, user_id: Any, date_range: DateRange) -> List[Observation]:
        """All of a user's entries in range, ascending by date then time."""
        rows = self._fetch_all(
            """
            SELECT metric_id, date, time, value, tags
            FROM entries
            WHERE user_id = %s AND date >= %s AND date <= %s
            ORDER BY date ASC, time ASC, id ASC
            """,
            (user_id, date_range.start, date_range.end),
        )
        return [_row_to_observation(r) for r in rows]

    def load_observations_for_metric(
        self, user_id: Any, metric_id: MetricId, date_range: DateRange
    ) -> List[Observation]:
        rows = self._fetch_all(
            """
            SELECT metric_id, date, time, value, tags
            FROM entries
            WHERE user_id = %s AND metric_id = %s AND date >= %s AND date <= %s
            ORDER BY date ASC, time ASC, id ASC
            """,
            (user_id, metric_id, date_range.start, date_range.end),
        )
        return [_row_to_observation(r) for r in rows]

    def list_metric_ids(self, user_id: Any) -> List[MetricId]:
        rows = self._fetch_all(
            "SELECT id FROM metrics WHERE user_id = %s ORDER BY id",
            (user_id,),
        )
        return [r["id"] for r in rows]

    def list_user_ids(self) -> List[Any]:
        rows = self._fetch_all("SELECT DISTINCT user_id FROM metrics ORDER BY user_id")
        return [r["user_id"] for r in rows]

    # ─── Insight persistence ─────────────────────────────────

    def store_insight(
        self,
        user_id: Any,
        kind: str,
        data: Dict[str, Any],
        confidence: float,
        date_range: Optional[DateRange] = None,
    ) -> None:
        if kind not in INSIGHT_TYPES:
            raise ValueError(f"unknown insight type {kind!r}")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {confidence}")
        self._execute(
            """
            INSERT INTO insights (user_id, type, data, confidence, date_range, is_active)
            VALUES (%s, %s, %s, %s, %s, TRUE)
            """,
            (
                user_id,
                kind,
                Json(data),
                confidence,
                Json(date_range.to_dict()) if date_range else None,
            ),
        )
        log.info("Stored %s insight for user %s", kind, user_id)

    def list_insights(self, user_id: Any, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        query = """
            SELECT id, type, data, confidence, date_range, inserted_at
            FROM insights
            WHERE user_id = %s AND is_active
        """
        params: list = [user_id]
        if kind:
            query += " AND type = %s"
            params.append(kind)
        query += " ORDER BY inserted_at DESC LIMIT %s"
        params.append(INSIGHT_LIST_LIMIT)
        rows = self._fetch_all(query, tuple(params))
        return [{k: to_jsonable(v) for k, v in row.items()} for row in rows]

    # ─── Export reads ────────────────────────────────────────

    def list_metrics(self, user_id: Any) -> List[Dict[str, Any]]:
        rows = self._fetch_all(
            """
            SELECT id, name, type, config, category, inserted_at
            FROM metrics
            WHERE user_id = %s
            ORDER BY id
            """,
            (user_id,),
        )
        return [{k: to_jsonable(v) for k, v in row.items()} for row in rows]

    def list_entries(self, user_id: Any) -> List[Dict[str, Any]]:
        """Entries joined with their metric name, newest first."""
        rows = self._fetch_all(
            """
            SELECT e.date, e.time, e.value, e.notes, e.tags, e.inserted_at,
                   m.name AS metric_name
            FROM entries e
            JOIN metrics m ON m.id = e.metric_id
            WHERE e.user_id = %s
            ORDER BY e.date DESC, e.time DESC
            """,
            (user_id,),
        )
        return [dict(row) for row in rows]
