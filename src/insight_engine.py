"""
Insight Engine: per-user analytics orchestration
==================================================
Fans one user's date range out to the analytics modules and merges the
results into a single immutable ``InsightBundle``.

  correlations     all metric pairs, Pearson, |r| ≥ 0.3 and n ≥ 5 kept
  trends           OLS trend + significance for every metric the user owns
  patterns         streaks / threshold crossings / habits / anomalies
  recommendations  built from the correlations and trends above

Correlations, trends and patterns run concurrently on a thread pool over
one entry snapshot; recommendations wait for the first two.  The whole
generation shares one deadline (INSIGHT_TIMEOUT_SECONDS, default 30 s).
Running out of time fails the call: there are no partial bundles.

The engine keeps no state between calls.  Concurrent refreshes for the
same user each build their own bundle; the last write wins downstream.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import date, datetime, timedelta, timezone
from itertools import combinations
from typing import Any, Callable, Dict, List, Optional, Sequence

from dotenv import load_dotenv

from analytics.correlations import correlation_strength, interpret_correlation, pearson_correlation
from analytics.patterns import detect_patterns
from analytics.recommendations import generate_recommendations
from analytics.trends import assess_significance, calculate_trend
from data_store import InsightStore
from models import (
    CorrelationResult,
    DateRange,
    InsightBundle,
    InsightTimeoutError,
    InvalidRangeError,
    MetricId,
    Observation,
    Pattern,
    TrendResult,
)
from notifier import broadcast_insights_update
from value_extractor import extract_value, numeric_series

load_dotenv()

log = logging.getLogger("insight_engine")


# ═══════════════════════════════════════════════════════════════
#  CONSTANTS
# ═══════════════════════════════════════════════════════════════

DEFAULT_WINDOW_DAYS = int(os.getenv("INSIGHT_DEFAULT_WINDOW_DAYS", "30"))
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("INSIGHT_TIMEOUT_SECONDS", "30"))
DEFAULT_WORKERS = int(os.getenv("INSIGHT_WORKERS", "4"))

# Pairing floor per side, then the product-level acceptance bar.
# Stricter than pearson_correlation's own n ≥ 3 floor.
MIN_VALUES_PER_METRIC = 3
MIN_ABS_CORRELATION = 0.3
MIN_CORRELATION_SAMPLE = 5

STORED_INSIGHT_TYPE = "combined"
STORED_INSIGHT_CONFIDENCE = 0.8


# ═══════════════════════════════════════════════════════════════
#  DATE RANGES
# ═══════════════════════════════════════════════════════════════

def default_date_range(today: Optional[date] = None) -> DateRange:
    """Trailing window ending today (UTC), inclusive on both ends."""
    end = today or datetime.now(timezone.utc).date()
    return DateRange(start=end - timedelta(days=DEFAULT_WINDOW_DAYS), end=end)


def _to_date(value: Any, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            raise InvalidRangeError(f"unparseable {label} {value!r}") from None
    raise InvalidRangeError(f"unparseable {label} {value!r}")


def coerce_date_range(value: Any = None, today: Optional[date] = None) -> DateRange:
    """Accept None, a DateRange, a (start, end) pair or a
    {"start_date": ..., "end_date": ...} mapping of dates / ISO strings.

    Raises InvalidRangeError for unparseable boundaries or end < start.
    """
    if value is None:
        return default_date_range(today)
    if isinstance(value, DateRange):
        return value
    if isinstance(value, dict):
        if "start_date" not in value or "end_date" not in value:
            raise InvalidRangeError("date range needs both start_date and end_date")
        start, end = value["start_date"], value["end_date"]
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        start, end = value
    else:
        raise InvalidRangeError(f"cannot interpret {value!r} as a date range")
    return DateRange(start=_to_date(start, "start_date"), end=_to_date(end, "end_date"))


# ═══════════════════════════════════════════════════════════════
#  PURE COMPUTATIONS (no I/O)
# ═══════════════════════════════════════════════════════════════

def group_values_by_metric(observations: Sequence[Observation]) -> Dict[MetricId, List[float]]:
    """metric_id → numeric values in snapshot order (non-numeric dropped)."""
    groups: Dict[MetricId, List[float]] = {}
    for obs in observations:
        values = groups.setdefault(obs.metric_id, [])
        value = extract_value(obs.raw_value)
        if value is not None:
            values.append(value)
    return groups


def compute_correlations(observations: Sequence[Observation]) -> List[CorrelationResult]:
    """Pearson r for every unordered metric pair (a < b) in the snapshot.

    Values are paired by position, not by date: each side's series is
    truncated to the shorter length.
    """
    groups = group_values_by_metric(observations)
    results: List[CorrelationResult] = []
    for metric_a, metric_b in combinations(sorted(groups), 2):
        values_a, values_b = groups[metric_a], groups[metric_b]
        if len(values_a) < MIN_VALUES_PER_METRIC or len(values_b) < MIN_VALUES_PER_METRIC:
            continue
        r = pearson_correlation(values_a, values_b)
        n = min(len(values_a), len(values_b))
        if abs(r) < MIN_ABS_CORRELATION or n < MIN_CORRELATION_SAMPLE:
            continue
        results.append(CorrelationResult(
            metric_a=metric_a,
            metric_b=metric_b,
            coefficient=r,
            sample_size=n,
            strength=correlation_strength(r),
            interpretation=interpret_correlation(r, str(metric_a), str(metric_b)),
        ))
    return results


def trend_for_observations(observations: Sequence[Observation],
                           metric_id: Optional[MetricId] = None) -> TrendResult:
    trend = assess_significance(calculate_trend(numeric_series(observations)))
    return dataclasses.replace(trend, metric_id=metric_id)


# ═══════════════════════════════════════════════════════════════
#  ENGINE
# ═══════════════════════════════════════════════════════════════

class InsightEngine:
    """
    Stateless orchestrator over an entry store.

    ``store`` must provide load_observations_for_analytics,
    load_observations_for_metric and list_metric_ids (plus store_insight
    for refresh_insights).  Defaults to the PostgreSQL ``InsightStore``.
    """

    def __init__(
        self,
        store: Any = None,
        conn_str: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_workers: Optional[int] = None,
        broadcaster: Optional[Callable[[Any, InsightBundle], bool]] = None,
    ):
        self.store = store if store is not None else InsightStore(conn_str)
        self.timeout_seconds = DEFAULT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.max_workers = max_workers or DEFAULT_WORKERS
        self.broadcaster = broadcaster or broadcast_insights_update

    # ─── Exposed operations ──────────────────────────────────

    def calculate_correlations(self, user_id: Any, date_range: Any = None) -> List[CorrelationResult]:
        rng = coerce_date_range(date_range)
        observations = self.store.load_observations_for_analytics(user_id, rng)
        results = compute_correlations(observations)
        log.info("   correlations: %d pairs kept for user %s (%s → %s)",
                 len(results), user_id, rng.start, rng.end)
        return results

    def detect_trends(self, user_id: Any, metric_id: MetricId, date_range: Any = None) -> TrendResult:
        rng = coerce_date_range(date_range)
        observations = self.store.load_observations_for_metric(user_id, metric_id, rng)
        return trend_for_observations(observations, metric_id)

    def detect_all_trends(self, user_id: Any, date_range: Any = None) -> List[TrendResult]:
        rng = coerce_date_range(date_range)
        trends = [self.detect_trends(user_id, metric_id, rng)
                  for metric_id in self.store.list_metric_ids(user_id)]
        log.info("   trends: %d metrics, %d significant",
                 len(trends), sum(1 for t in trends if t.significant))
        return trends

    def identify_patterns(self, user_id: Any, date_range: Any = None) -> List[Pattern]:
        rng = coerce_date_range(date_range)
        return detect_patterns(self.store.load_observations_for_analytics(user_id, rng))

    def generate_insights(self, user_id: Any, date_range: Any = None) -> InsightBundle:
        """Build a complete bundle or raise InsightTimeoutError."""
        rng = coerce_date_range(date_range)
        log.info("Generating insights for user %s (%s → %s)...", user_id, rng.start, rng.end)
        deadline = time.monotonic() + self.timeout_seconds

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="insights")
        try:
            trends_f = executor.submit(self.detect_all_trends, user_id, rng)
            snapshot_f = executor.submit(self.store.load_observations_for_analytics, user_id, rng)
            observations = self._await(snapshot_f, deadline, "entry snapshot")

            correlations_f = executor.submit(compute_correlations, observations)
            patterns_f = executor.submit(detect_patterns, observations)

            correlations = self._await(correlations_f, deadline, "correlations")
            trends = self._await(trends_f, deadline, "trends")
            patterns = self._await(patterns_f, deadline, "patterns")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        recommendations = generate_recommendations(correlations, trends)
        bundle = InsightBundle(
            correlations=tuple(correlations),
            trends=tuple(trends),
            patterns=tuple(patterns),
            recommendations=tuple(recommendations),
            generated_at=datetime.now(timezone.utc),
            date_range=rng,
        )
        log.info(
            "Insights ready for user %s: %d correlations, %d trends, %d patterns, %d recommendations",
            user_id, len(bundle.correlations), len(bundle.trends),
            len(bundle.patterns), len(bundle.recommendations),
        )
        return bundle

    def refresh_insights(self, user_id: Any, date_range: Any = None) -> Dict[str, Any]:
        """Generate, persist and broadcast a fresh bundle.

        Persistence and broadcast are fire-and-forget: failures are logged
        and reported in the returned status, never retried or raised.
        Generation errors (timeout, invalid range) do propagate.
        """
        bundle = self.generate_insights(user_id, date_range)
        status: Dict[str, Any] = {"user_id": user_id, "bundle": bundle, "stored": False, "broadcast": False}

        try:
            self.store.store_insight(
                user_id,
                STORED_INSIGHT_TYPE,
                bundle.to_dict(),
                STORED_INSIGHT_CONFIDENCE,
                bundle.date_range,
            )
            status["stored"] = True
        except Exception as e:
            log.warning("Persisting insights for user %s failed (non-fatal): %s", user_id, e)

        try:
            status["broadcast"] = bool(self.broadcaster(user_id, bundle))
        except Exception as e:
            log.warning("Broadcasting insights for user %s failed (non-fatal): %s", user_id, e)

        return status

    # ─── Internals ───────────────────────────────────────────

    @staticmethod
    def _await(future: Future, deadline: float, label: str):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            if future.done():
                return future.result()
            log.error("Insight generation deadline passed before %s finished", label)
            raise InsightTimeoutError(f"insight generation timed out waiting for {label}")
        try:
            return future.result(timeout=remaining)
        except FutureTimeout:
            # on 3.11+ a TimeoutError raised by the worker itself lands here too
            if future.done():
                return future.result()
            log.error("Insight generation timed out waiting for %s", label)
            raise InsightTimeoutError(f"insight generation timed out waiting for {label}") from None
