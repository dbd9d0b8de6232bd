"""
Tests for the insight orchestrator.

Covers: date-range coercion, the correlation acceptance filter, per-metric
trends, full bundle generation (determinism, deadline), and the
fire-and-forget persist / broadcast path of refresh_insights.
"""
import os
import sys
import time
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from insight_engine import (
    DEFAULT_WINDOW_DAYS,
    STORED_INSIGHT_CONFIDENCE,
    STORED_INSIGHT_TYPE,
    InsightEngine,
    coerce_date_range,
    compute_correlations,
    default_date_range,
    group_values_by_metric,
)
from models import (
    CorrelationStrength,
    DateRange,
    InsightBundle,
    InsightTimeoutError,
    InvalidRangeError,
    Observation,
    TrendClassification,
)
from conftest import FakeStore, daily_observations

START = date(2024, 1, 1)
JANUARY = DateRange(date(2024, 1, 1), date(2024, 1, 31))


def scenario_store():
    """Metric 1 = ratings 5..9, metric 2 = numbers 10..18, five consecutive days."""
    observations = (
        daily_observations(1, [5, 6, 7, 8, 9], key="rating")
        + daily_observations(2, [10, 12, 14, 16, 18])
    )
    return FakeStore(observations)


def make_engine(store, **kwargs):
    kwargs.setdefault("broadcaster", MagicMock(return_value=True))
    return InsightEngine(store=store, **kwargs)


# ─── Date ranges ─────────────────────────────────────────────


class TestDateRanges:

    def test_default_is_trailing_window(self):
        rng = default_date_range(today=date(2024, 3, 31))
        assert rng.end == date(2024, 3, 31)
        assert rng.start == date(2024, 3, 31) - timedelta(days=DEFAULT_WINDOW_DAYS)

    def test_none_gives_default(self):
        assert coerce_date_range(None, today=date(2024, 3, 31)) == default_date_range(date(2024, 3, 31))

    def test_mapping_of_iso_strings(self):
        rng = coerce_date_range({"start_date": "2024-01-01", "end_date": "2024-01-31"})
        assert rng == JANUARY

    def test_pair(self):
        assert coerce_date_range((date(2024, 1, 1), date(2024, 1, 31))) == JANUARY

    def test_range_passes_through(self):
        assert coerce_date_range(JANUARY) is JANUARY

    def test_single_day_is_valid(self):
        rng = coerce_date_range(("2024-01-05", "2024-01-05"))
        assert rng.days == 1

    @pytest.mark.parametrize("value", [
        {"start_date": "2024-02-01", "end_date": "2024-01-01"},
        {"start_date": "2024-01-01"},
        {"start_date": "not-a-date", "end_date": "2024-01-31"},
        ("2024-01-01", 12),
        "2024-01-01",
    ])
    def test_invalid(self, value):
        with pytest.raises(InvalidRangeError):
            coerce_date_range(value)

    def test_invalid_range_is_a_value_error(self):
        with pytest.raises(ValueError):
            DateRange(date(2024, 2, 1), date(2024, 1, 1))

    def test_datetime_boundaries_become_dates(self):
        rng = DateRange(datetime(2024, 1, 1, 9, 30), date(2024, 1, 31))
        assert rng.start == date(2024, 1, 1)
        assert type(rng.start) is date
        assert rng == JANUARY

    def test_datetime_end_before_start_is_invalid(self):
        with pytest.raises(InvalidRangeError):
            DateRange(datetime(2024, 2, 1), date(2024, 1, 1))

    def test_same_day_datetimes_span_one_day(self):
        assert DateRange(datetime(2024, 1, 5, 8), datetime(2024, 1, 5, 20)).days == 1


# ─── Correlations ────────────────────────────────────────────


class TestComputeCorrelations:

    def test_scenario_pair(self):
        results = compute_correlations(scenario_store().observations)
        assert len(results) == 1
        result = results[0]
        assert (result.metric_a, result.metric_b) == (1, 2)
        assert result.coefficient == pytest.approx(1.0, abs=1e-3)
        assert result.sample_size == 5
        assert result.strength == CorrelationStrength.STRONG
        assert result.interpretation.startswith("1 and 2 show a strong positive correlation")

    def test_sample_of_four_is_rejected(self):
        observations = daily_observations(1, [1, 2, 3, 4]) + daily_observations(2, [2, 4, 6, 8])
        assert compute_correlations(observations) == []

    def test_weak_correlation_is_rejected(self):
        observations = (
            daily_observations(1, [1, 2, 3, 4, 5, 6])
            + daily_observations(2, [3, 1, 3, 1, 3, 1])
        )
        assert compute_correlations(observations) == []

    def test_pairs_by_position_not_date(self):
        observations = (
            daily_observations(1, [1, 2, 3, 4, 5])
            + daily_observations(2, [5, 4, 3, 2, 1], start=START + timedelta(days=10))
        )
        results = compute_correlations(observations)
        assert results[0].coefficient == pytest.approx(-1.0)

    def test_non_numeric_entries_dropped(self):
        observations = (
            daily_observations(1, [1, 2, 3, 4, 5])
            + daily_observations(2, [2, 4, 6, 8, 10])
            + daily_observations(2, ["tired"], key="text")
        )
        groups = group_values_by_metric(observations)
        assert groups[2] == [2.0, 4.0, 6.0, 8.0, 10.0]
        assert compute_correlations(observations)[0].sample_size == 5

    def test_metric_with_too_few_values_skipped(self):
        observations = daily_observations(1, [1, 2, 3, 4, 5]) + daily_observations(2, [1, 2])
        assert compute_correlations(observations) == []

    def test_pairs_enumerated_once(self):
        observations = []
        for metric_id in (3, 1, 2):
            observations += daily_observations(metric_id, [1, 2, 3, 4, 5, 7])
        pairs = [(c.metric_a, c.metric_b) for c in compute_correlations(observations)]
        assert pairs == [(1, 2), (1, 3), (2, 3)]

    def test_infinite_readings_are_dropped(self):
        observations = (
            daily_observations(1, [1, 2, float("inf"), 4, 5])
            + daily_observations(2, [9, 1, 7, 2, 8])
        )
        assert group_values_by_metric(observations)[1] == [1.0, 2.0, 4.0, 5.0]
        # four finite readings left for metric 1, below the pairing minimum
        assert compute_correlations(observations) == []


# ─── Exposed engine operations ───────────────────────────────


class TestEngineOperations:

    def test_calculate_correlations(self):
        engine = make_engine(scenario_store())
        results = engine.calculate_correlations("u1", JANUARY)
        assert [(c.metric_a, c.metric_b, c.sample_size) for c in results] == [(1, 2, 5)]

    def test_detect_trends_for_rating_metric(self):
        trend = make_engine(scenario_store()).detect_trends("u1", 1, JANUARY)
        assert trend.metric_id == 1
        assert trend.slope > 0
        assert trend.classification == TrendClassification.INCREASING
        # perfect fit → SE guarded to 1 → t = slope = 1
        assert trend.t_statistic == pytest.approx(1.0)
        assert trend.significant is False

    def test_detect_trends_respects_range(self):
        trend = make_engine(scenario_store()).detect_trends(
            "u1", 1, DateRange(date(2024, 1, 1), date(2024, 1, 2))
        )
        assert trend.classification == TrendClassification.INSUFFICIENT_DATA
        assert trend.data_points == 2

    def test_detect_all_trends_includes_metrics_without_entries(self):
        store = scenario_store()
        store._metric_ids = [1, 2, 99]
        trends = make_engine(store).detect_all_trends("u1", JANUARY)
        assert [t.metric_id for t in trends] == [1, 2, 99]
        assert trends[2].classification == TrendClassification.INSUFFICIENT_DATA

    def test_identify_patterns(self):
        patterns = make_engine(scenario_store()).identify_patterns("u1", JANUARY)
        # five consecutive days per metric → one streak each
        assert sorted(p.metric_id for p in patterns if p.kind == "streak") == [1, 2]

    def test_invalid_range_raises(self):
        with pytest.raises(InvalidRangeError):
            make_engine(scenario_store()).calculate_correlations(
                "u1", {"start_date": "2024-02-01", "end_date": "2024-01-01"}
            )


# ─── generate_insights ───────────────────────────────────────


class TestGenerateInsights:

    def test_bundle_contents(self):
        bundle = make_engine(scenario_store()).generate_insights("u1", JANUARY)
        assert isinstance(bundle, InsightBundle)
        assert len(bundle.correlations) == 1
        assert [t.metric_id for t in bundle.trends] == [1, 2]
        assert bundle.date_range == JANUARY
        # r ≈ 1 → one correlation recommendation; no significant trends
        assert [r.message for r in bundle.recommendations] == [
            "Improving 1 may positively impact 2",
        ]

    def test_deterministic_numbers(self):
        engine = make_engine(scenario_store())
        first = engine.generate_insights("u1", JANUARY)
        second = engine.generate_insights("u1", JANUARY)
        assert first.correlations == second.correlations
        assert first.trends == second.trends
        assert first.patterns == second.patterns
        assert first.recommendations == second.recommendations

    def test_empty_user(self):
        bundle = make_engine(FakeStore()).generate_insights("nobody", JANUARY)
        assert bundle.correlations == ()
        assert bundle.trends == ()
        assert bundle.patterns == ()
        assert bundle.recommendations == ()

    def test_to_dict_is_json_ready(self):
        payload = make_engine(scenario_store()).generate_insights("u1", JANUARY).to_dict()
        assert payload["date_range"] == {"start_date": "2024-01-01", "end_date": "2024-01-31"}
        assert payload["trends"][0]["classification"] == "increasing"
        assert payload["patterns"][0]["type"] == "streak"
        assert isinstance(payload["generated_at"], str)

    def test_timeout_fails_whole_bundle(self):
        class SlowStore(FakeStore):
            def load_observations_for_analytics(self, user_id, date_range):
                time.sleep(0.5)
                return super().load_observations_for_analytics(user_id, date_range)

        store = SlowStore(scenario_store().observations)
        engine = make_engine(store, timeout_seconds=0.05)
        with pytest.raises(InsightTimeoutError):
            engine.generate_insights("u1", JANUARY)

    def test_timeout_is_a_builtin_timeout(self):
        assert issubclass(InsightTimeoutError, TimeoutError)

    def test_worker_timeout_error_is_not_a_deadline(self):
        class FlakyStore(FakeStore):
            def load_observations_for_analytics(self, user_id, date_range):
                raise TimeoutError("socket read timed out")

        engine = make_engine(FlakyStore(), timeout_seconds=5)
        started = time.monotonic()
        with pytest.raises(TimeoutError) as exc:
            engine.generate_insights("u1", JANUARY)
        assert not isinstance(exc.value, InsightTimeoutError)
        assert "socket" in str(exc.value)
        assert time.monotonic() - started < 4


# ─── refresh_insights ────────────────────────────────────────


class TestRefreshInsights:

    def test_persists_and_broadcasts(self):
        store = scenario_store()
        broadcaster = MagicMock(return_value=True)
        engine = make_engine(store, broadcaster=broadcaster)

        result = engine.refresh_insights("u1", JANUARY)

        assert result["stored"] is True
        assert result["broadcast"] is True
        assert len(store.stored) == 1
        saved = store.stored[0]
        assert saved["type"] == STORED_INSIGHT_TYPE == "combined"
        assert saved["confidence"] == STORED_INSIGHT_CONFIDENCE == 0.8
        assert saved["date_range"] == JANUARY
        assert saved["data"]["correlations"][0]["metric_a"] == 1
        broadcaster.assert_called_once_with("u1", result["bundle"])

    def test_persist_failure_does_not_stop_broadcast(self):
        store = scenario_store()
        store.store_insight = MagicMock(side_effect=RuntimeError("db down"))
        broadcaster = MagicMock(return_value=True)

        result = make_engine(store, broadcaster=broadcaster).refresh_insights("u1", JANUARY)

        assert result["stored"] is False
        assert result["broadcast"] is True
        store.store_insight.assert_called_once()
        broadcaster.assert_called_once()

    def test_broadcast_failure_is_swallowed(self):
        store = scenario_store()
        broadcaster = MagicMock(side_effect=ConnectionError("gateway gone"))

        result = make_engine(store, broadcaster=broadcaster).refresh_insights("u1", JANUARY)

        assert result["stored"] is True
        assert result["broadcast"] is False

    def test_generation_errors_propagate(self):
        engine = make_engine(scenario_store())
        with pytest.raises(InvalidRangeError):
            engine.refresh_insights("u1", ("2024-02-01", "2024-01-01"))
