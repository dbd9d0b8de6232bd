"""
Behavioural pattern mining over a user's entries for one date range.

Four independent detectors, each a pure function of the observation list:

  streaks     runs of entries no more than 2 days apart (length ≥ 3)
  thresholds  moves across mean ± 1σ        (needs > 5 numeric points)
  habits      regular logging on a weekday  (≥ 3 entries, consistency > 0.7)
  anomalies   values further than 2σ from the mean (needs ≥ 5 numeric points)

σ is always the population standard deviation.  Streaks and habits look
at every entry; thresholds and anomalies only at entries with a number.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

import numpy as np
import pandas as pd

from models import (
    Anomaly,
    CrossingDirection,
    Habit,
    Observation,
    Pattern,
    Streak,
    StreakDirection,
    ThresholdCrossing,
)
from value_extractor import observations_frame

log = logging.getLogger("analytics.patterns")

STREAK_MAX_GAP_DAYS = 2
MIN_STREAK_LENGTH = 3
STREAK_IMPROVING_RATIO = 1.1
STREAK_DECLINING_RATIO = 0.9

MIN_THRESHOLD_POINTS = 5   # strictly more than this many are needed
MIN_HABIT_ENTRIES = 3
MIN_HABIT_CONSISTENCY = 0.7
# Unscaled heuristic: gap variance (days²) / 100
HABIT_VARIANCE_SCALE = 100.0
MIN_ANOMALY_POINTS = 5
ANOMALY_SIGMA = 2.0

_ORDER = ["ordinal", "position"]


# ─── Streaks ──────────────────────────────────────────────────


def _streak_direction(values: Sequence[float]) -> StreakDirection:
    numeric = [v for v in values if not math.isnan(v)]
    if len(numeric) < 2:
        return StreakDirection.UNKNOWN
    first, last = numeric[0], numeric[-1]
    if last > first * STREAK_IMPROVING_RATIO:
        return StreakDirection.IMPROVING
    if last < first * STREAK_DECLINING_RATIO:
        return StreakDirection.DECLINING
    return StreakDirection.STABLE


def _streaks(frame: pd.DataFrame) -> List[Streak]:
    out: List[Streak] = []
    for metric_id, group in frame.groupby("metric_id", sort=False):
        ordered = group.sort_values(_ORDER, kind="mergesort")
        ordinals = ordered["ordinal"].tolist()
        dates = ordered["date"].tolist()
        values = ordered["value"].tolist()

        start = 0
        for i in range(1, len(ordinals) + 1):
            if i < len(ordinals) and ordinals[i] - ordinals[i - 1] <= STREAK_MAX_GAP_DAYS:
                continue
            if i - start >= MIN_STREAK_LENGTH:
                out.append(Streak(
                    metric_id=metric_id,
                    length=i - start,
                    start_date=dates[start],
                    end_date=dates[i - 1],
                    direction=_streak_direction(values[start:i]),
                ))
            start = i
    return out


def detect_streaks(observations: Sequence[Observation]) -> List[Streak]:
    return _streaks(observations_frame(observations))


# ─── Threshold crossings ──────────────────────────────────────


def _threshold_crossings(frame: pd.DataFrame) -> List[ThresholdCrossing]:
    out: List[ThresholdCrossing] = []
    numeric = frame.dropna(subset=["value"])
    for metric_id, group in numeric.groupby("metric_id", sort=False):
        if len(group) <= MIN_THRESHOLD_POINTS:
            continue
        ordered = group.sort_values(_ORDER, kind="mergesort")
        values = ordered["value"].to_numpy(dtype=np.float64)
        dates = ordered["date"].tolist()

        mean = float(values.mean())
        sigma = float(values.std())
        upper = mean + sigma
        lower = mean - sigma

        for i in range(1, len(values)):
            prev, curr = float(values[i - 1]), float(values[i])
            if prev <= upper and curr > upper:
                out.append(ThresholdCrossing(
                    metric_id=metric_id,
                    direction=CrossingDirection.UPWARD,
                    threshold=upper,
                    date=dates[i],
                    value=curr,
                ))
            if prev >= lower and curr < lower:
                out.append(ThresholdCrossing(
                    metric_id=metric_id,
                    direction=CrossingDirection.DOWNWARD,
                    threshold=lower,
                    date=dates[i],
                    value=curr,
                ))
    return out


def detect_threshold_crossings(observations: Sequence[Observation]) -> List[ThresholdCrossing]:
    return _threshold_crossings(observations_frame(observations))


# ─── Habits ───────────────────────────────────────────────────


def habit_consistency(ordinals: Sequence[int]) -> float:
    """1 − Var(day gaps)/100, floored at 0.  A single entry scores 1.0."""
    if len(ordinals) <= 1:
        return 1.0
    gaps = np.diff(np.sort(np.asarray(ordinals, dtype=np.float64)))
    variance = float(np.var(gaps))
    return max(0.0, 1.0 - variance / HABIT_VARIANCE_SCALE)


def _habits(frame: pd.DataFrame) -> List[Habit]:
    out: List[Habit] = []
    for (metric_id, weekday), group in frame.groupby(["metric_id", "weekday"], sort=False):
        if len(group) < MIN_HABIT_ENTRIES:
            continue
        consistency = habit_consistency(group["ordinal"].tolist())
        if consistency > MIN_HABIT_CONSISTENCY:
            out.append(Habit(
                metric_id=metric_id,
                day_of_week=int(weekday),
                frequency=int(len(group)),
                consistency=consistency,
            ))
    return out


def detect_habits(observations: Sequence[Observation]) -> List[Habit]:
    return _habits(observations_frame(observations))


# ─── Anomalies ────────────────────────────────────────────────


def _anomalies(frame: pd.DataFrame) -> List[Anomaly]:
    out: List[Anomaly] = []
    numeric = frame.dropna(subset=["value"])
    for metric_id, group in numeric.groupby("metric_id", sort=False):
        if len(group) < MIN_ANOMALY_POINTS:
            continue
        values = group["value"].to_numpy(dtype=np.float64)
        dates = group["date"].tolist()
        mean = float(values.mean())
        sigma = float(values.std())

        for d, v in zip(dates, values):
            distance = abs(float(v) - mean)
            if distance > ANOMALY_SIGMA * sigma:
                out.append(Anomaly(
                    metric_id=metric_id,
                    date=d,
                    value=float(v),
                    deviation=distance / sigma,
                ))
    return out


def detect_anomalies(observations: Sequence[Observation]) -> List[Anomaly]:
    return _anomalies(observations_frame(observations))


# ─── All detectors ────────────────────────────────────────────


def detect_patterns(observations: Sequence[Observation]) -> List[Pattern]:
    """Run every detector over one snapshot and concatenate the results."""
    frame = observations_frame(observations)
    streaks = _streaks(frame)
    crossings = _threshold_crossings(frame)
    habits = _habits(frame)
    anomalies = _anomalies(frame)
    log.info(
        "   patterns: %d streaks, %d crossings, %d habits, %d anomalies",
        len(streaks), len(crossings), len(habits), len(anomalies),
    )
    return [*streaks, *crossings, *habits, *anomalies]
