"""
Value extraction: heterogeneous entry payloads → optional float.

Entries store their value as a small JSON object whose shape depends on
the metric type:

    {"value": 72.5}        number
    {"rating": 4}          rating
    {"duration": 45}       duration (minutes)
    {"binary": true}       yes / no

Shapes are checked in that order and the first match wins.  Anything else
(text metrics, empty objects, strings, malformed rows) is "no value": the
entry is dropped from numeric analyses, never counted as zero.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from models import NumericPoint, Observation

FRAME_COLUMNS = ["position", "metric_id", "date", "ordinal", "weekday", "value"]


@dataclass(frozen=True)
class NumberValue:
    value: float


@dataclass(frozen=True)
class RatingValue:
    value: float


@dataclass(frozen=True)
class DurationValue:
    value: float


@dataclass(frozen=True)
class BinaryValue:
    flag: bool


@dataclass(frozen=True)
class UnrecognizedValue:
    raw: Any


Payload = Union[NumberValue, RatingValue, DurationValue, BinaryValue, UnrecognizedValue]


def _is_number(value: Any) -> bool:
    # bool is an int subclass; {"value": true} is not a number
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    # NaN and ±inf are malformed readings, not numbers
    return math.isfinite(float(value))


def classify_payload(raw_value: Any) -> Payload:
    """Map a raw entry payload onto one of the known value shapes."""
    if not isinstance(raw_value, dict):
        return UnrecognizedValue(raw_value)
    if _is_number(raw_value.get("value")):
        return NumberValue(float(raw_value["value"]))
    if _is_number(raw_value.get("rating")):
        return RatingValue(float(raw_value["rating"]))
    if _is_number(raw_value.get("duration")):
        return DurationValue(float(raw_value["duration"]))
    if isinstance(raw_value.get("binary"), bool):
        return BinaryValue(raw_value["binary"])
    return UnrecognizedValue(raw_value)


def payload_value(payload: Payload) -> Optional[float]:
    if isinstance(payload, BinaryValue):
        return 1.0 if payload.flag else 0.0
    if isinstance(payload, UnrecognizedValue):
        return None
    return payload.value


def extract_value(raw_value: Any) -> Optional[float]:
    """Return the numeric reading of an entry payload, or None."""
    return payload_value(classify_payload(raw_value))


def numeric_series(observations: Iterable[Observation]) -> List[NumericPoint]:
    """Keep the observations that carry a number, in their given order."""
    points: List[NumericPoint] = []
    for obs in observations:
        value = extract_value(obs.raw_value)
        if value is not None:
            points.append(NumericPoint(date=obs.date, value=value))
    return points


def observations_frame(observations: Iterable[Observation]) -> pd.DataFrame:
    """Tabulate observations for the pattern detectors.

    ``position`` preserves the input order so that sorts by date can be
    made stable; ``value`` is NaN where the payload has no number.
    """
    rows = []
    for position, obs in enumerate(observations):
        value = extract_value(obs.raw_value)
        rows.append((
            position,
            obs.metric_id,
            obs.date,
            obs.date.toordinal(),
            obs.date.isoweekday(),
            np.nan if value is None else value,
        ))
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["metric_id"] = df["metric_id"].astype(object)
    df["value"] = df["value"].astype("float64")
    return df
