"""Export a user's metrics, entries and stored insights as JSON or CSV."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict

import pandas as pd

from data_store import to_jsonable

CSV_COLUMNS = ["Date", "Time", "Metric", "Value", "Notes", "Tags"]
EXPORT_FORMATS = {
    "json": "application/json",
    "csv": "text/csv",
}


def _entry_for_export(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "date": to_jsonable(entry.get("date")),
        "time": to_jsonable(entry.get("time")),
        "value": entry.get("value"),
        "notes": entry.get("notes"),
        "tags": list(entry.get("tags") or []),
        "metric_name": entry.get("metric_name"),
        "created_at": to_jsonable(entry.get("inserted_at")),
    }


def export_json(user_id: Any, store) -> str:
    """Full account dump: metrics, entries (newest first), active insights."""
    metrics = store.list_metrics(user_id)
    data = {
        "user": {"id": user_id},
        "metrics": [
            {
                "name": m.get("name"),
                "type": m.get("type"),
                "config": m.get("config"),
                "category": m.get("category"),
                "created_at": m.get("inserted_at"),
            }
            for m in metrics
        ],
        "entries": [_entry_for_export(e) for e in store.list_entries(user_id)],
        "insights": [
            {
                "type": i.get("type"),
                "data": i.get("data"),
                "confidence": i.get("confidence"),
                "date_range": i.get("date_range"),
                "created_at": i.get("inserted_at"),
            }
            for i in store.list_insights(user_id)
        ],
        "exported_at": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def export_csv(user_id: Any, store) -> str:
    """One row per entry: Date, Time, Metric, Value (JSON), Notes, Tags (;-joined)."""
    rows = []
    for entry in store.list_entries(user_id):
        rows.append([
            to_jsonable(entry.get("date")),
            to_jsonable(entry.get("time")) if entry.get("time") else "",
            entry.get("metric_name") or "",
            json.dumps(entry.get("value"), sort_keys=True),
            entry.get("notes") or "",
            ";".join(entry.get("tags") or []),
        ])
    return pd.DataFrame(rows, columns=CSV_COLUMNS).to_csv(index=False)


def export_data(user_id: Any, store, fmt: str = "json") -> str:
    if fmt == "json":
        return export_json(user_id, store)
    if fmt == "csv":
        return export_csv(user_id, store)
    raise ValueError(f"Unsupported export format: {fmt!r}")
