"""
Shared helpers for API routes.
Contains: date-range parsing, JSON coercion, store/engine factories.
"""

from __future__ import annotations

import logging
import math
from functools import lru_cache
from typing import Any, Optional

from dotenv import load_dotenv

from data_store import InsightStore, resolve_conn_str
from insight_engine import InsightEngine, coerce_date_range
from models import DateRange, InvalidRangeError

load_dotenv()

log = logging.getLogger("api")


# ─── Store / engine ─────────────────────────────────────────

def _conn_str() -> str:
    return resolve_conn_str()


@lru_cache(maxsize=1)
def get_store() -> InsightStore:
    return InsightStore(_conn_str())


def get_engine() -> InsightEngine:
    return InsightEngine(store=get_store())


# ─── Request parsing ────────────────────────────────────────

def parse_date_range(start_date: Optional[str], end_date: Optional[str]) -> Optional[DateRange]:
    """Query-string boundaries → DateRange.

    Neither given → None (the engine's trailing default window).
    Only one given, an unparseable value, or end before start → InvalidRangeError.
    """
    if start_date is None and end_date is None:
        return None
    if start_date is None or end_date is None:
        raise InvalidRangeError("start_date and end_date must be given together")
    return coerce_date_range({"start_date": start_date, "end_date": end_date})


# ─── Type coercion ──────────────────────────────────────────

def _finite(value: Any) -> Any:
    """JSON has no inf/nan; map them to None."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [jsonable(v) for v in value]
    return _finite(value)
