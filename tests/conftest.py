"""
Shared test configuration.

Puts src/ on sys.path so flat modules (models, insight_engine, ...) and
the analytics / pipeline / routes directories import the same way they do
when the service runs from src/.

Also provides an in-memory entry store so the engine, the pipeline and the
API can be exercised without PostgreSQL.
"""

import os
import sys
from datetime import date, timedelta

import pytest

_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_src_dir = os.path.join(_project_root, "src")

if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)

from models import Observation  # noqa: E402


class FakeStore:
    """Dict-backed stand-in for data_store.InsightStore."""

    def __init__(self, observations=None, metric_ids=None, user_ids=None):
        self.observations = list(observations or [])
        self._metric_ids = metric_ids
        self._user_ids = user_ids
        self.stored = []
        self.snapshot_calls = 0

    def _in_range(self, obs, date_range):
        return date_range.start <= obs.date <= date_range.end

    def load_observations_for_analytics(self, user_id, date_range):
        self.snapshot_calls += 1
        return [o for o in self.observations if self._in_range(o, date_range)]

    def load_observations_for_metric(self, user_id, metric_id, date_range):
        return [o for o in self.observations
                if o.metric_id == metric_id and self._in_range(o, date_range)]

    def list_metric_ids(self, user_id):
        if self._metric_ids is not None:
            return list(self._metric_ids)
        return sorted({o.metric_id for o in self.observations})

    def list_user_ids(self):
        return list(self._user_ids or [])

    def store_insight(self, user_id, kind, data, confidence, date_range=None):
        self.stored.append({
            "user_id": user_id,
            "type": kind,
            "data": data,
            "confidence": confidence,
            "date_range": date_range,
        })

    def list_insights(self, user_id, kind=None):
        return [
            {"type": s["type"], "data": s["data"], "confidence": s["confidence"],
             "date_range": s["date_range"].to_dict() if s["date_range"] else None,
             "inserted_at": "2024-03-01T00:00:00+00:00"}
            for s in self.stored
            if s["user_id"] == user_id and (kind is None or s["type"] == kind)
        ]


def daily_observations(metric_id, values, start=date(2024, 1, 1), key="value"):
    """One observation per consecutive day, payload ``{key: value}``."""
    return [
        Observation(metric_id=metric_id, date=start + timedelta(days=i), raw_value={key: v})
        for i, v in enumerate(values)
    ]


@pytest.fixture
def fake_store_cls():
    return FakeStore


@pytest.fixture
def daily():
    return daily_observations
