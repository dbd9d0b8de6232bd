"""
Tests for entry payload → number extraction.

Covers: shape priority, non-numeric payloads, bool / NaN guards,
numeric_series filtering and the pattern-detector frame.
"""
import os
import sys
from datetime import date

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from models import NumericPoint, Observation
from value_extractor import (
    BinaryValue,
    DurationValue,
    NumberValue,
    RatingValue,
    UnrecognizedValue,
    classify_payload,
    extract_value,
    numeric_series,
    observations_frame,
)


# ─── classify_payload ─────────────────────────────────────────


class TestClassifyPayload:

    def test_number(self):
        assert classify_payload({"value": 72.5}) == NumberValue(72.5)

    def test_rating(self):
        assert classify_payload({"rating": 4}) == RatingValue(4.0)

    def test_duration(self):
        assert classify_payload({"duration": 45}) == DurationValue(45.0)

    def test_binary(self):
        assert classify_payload({"binary": False}) == BinaryValue(False)

    def test_value_wins_over_rating(self):
        assert classify_payload({"rating": 2, "value": 9}) == NumberValue(9.0)

    def test_rating_wins_over_duration(self):
        assert classify_payload({"duration": 30, "rating": 3}) == RatingValue(3.0)

    def test_non_numeric_value_falls_through(self):
        # "value" is text, so the next shape is tried
        assert classify_payload({"value": "good", "rating": 5}) == RatingValue(5.0)

    @pytest.mark.parametrize("raw", [
        {},
        {"text": "felt fine"},
        {"value": "72"},
        {"binary": "yes"},
        None,
        "72",
        42,
        [1, 2, 3],
    ])
    def test_unrecognized(self, raw):
        assert isinstance(classify_payload(raw), UnrecognizedValue)


# ─── extract_value ────────────────────────────────────────────


class TestExtractValue:

    def test_binary_true_is_one(self):
        assert extract_value({"binary": True}) == 1.0

    def test_binary_false_is_zero(self):
        assert extract_value({"binary": False}) == 0.0

    def test_bool_is_not_a_number(self):
        assert extract_value({"value": True}) is None

    def test_nan_is_not_a_number(self):
        assert extract_value({"value": float("nan")}) is None

    @pytest.mark.parametrize("payload", [
        {"value": float("inf")},
        {"value": float("-inf")},
        {"rating": float("inf")},
        {"duration": float("-inf")},
    ])
    def test_infinity_is_not_a_number(self, payload):
        assert extract_value(payload) is None

    def test_infinite_value_falls_through_to_rating(self):
        assert classify_payload({"value": float("inf"), "rating": 3}) == RatingValue(3.0)

    def test_integer_becomes_float(self):
        result = extract_value({"duration": 30})
        assert result == 30.0
        assert isinstance(result, float)

    def test_unrecognized_is_none_not_zero(self):
        assert extract_value({"note": "rest day"}) is None


# ─── numeric_series / observations_frame ─────────────────────


def _obs(metric_id, day, raw):
    return Observation(metric_id=metric_id, date=date(2024, 1, day), raw_value=raw)


class TestNumericSeries:

    def test_drops_non_numeric_and_keeps_order(self):
        observations = [
            _obs(1, 3, {"value": 5}),
            _obs(1, 1, {"text": "skip"}),
            _obs(1, 2, {"rating": 2}),
        ]
        assert numeric_series(observations) == [
            NumericPoint(date(2024, 1, 3), 5.0),
            NumericPoint(date(2024, 1, 2), 2.0),
        ]

    def test_empty(self):
        assert numeric_series([]) == []


class TestObservationsFrame:

    def test_columns_and_nan_for_missing(self):
        df = observations_frame([
            _obs("mood", 1, {"rating": 4}),
            _obs("notes", 2, {"text": "x"}),
        ])
        assert list(df.columns) == ["position", "metric_id", "date", "ordinal", "weekday", "value"]
        assert df["value"].iloc[0] == 4.0
        assert np.isnan(df["value"].iloc[1])

    def test_weekday_is_iso(self):
        # 2024-01-01 was a Monday
        df = observations_frame([_obs(1, 1, {"value": 1}), _obs(1, 7, {"value": 1})])
        assert df["weekday"].tolist() == [1, 7]

    def test_empty_frame_has_columns(self):
        df = observations_frame([])
        assert df.empty
        assert "value" in df.columns
