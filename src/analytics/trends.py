"""
Linear trend analysis over a single metric's time series.

  calculate_trend      OLS fit of value against day offset, R², label
  assess_significance  slope t-statistic check
  detect_patterns      day-of-week effect (monthly / seasonal not built)
  forecast             linear extrapolation from a significant trend

All functions are pure; they take ordered ``NumericPoint`` lists
(ascending date) and return new result objects.
"""

from __future__ import annotations

import dataclasses
import math
from collections import defaultdict
from typing import Dict, List, Sequence

import numpy as np

from models import Forecast, NumericPoint, TrendClassification, TrendResult, WeeklyPattern

MIN_TREND_POINTS = 3
MIN_PATTERN_POINTS = 7
MIN_WEEKDAYS = 3

NO_TREND_R2 = 0.1
SLOPE_EPSILON = 0.1
SIGNIFICANT_T = 2.0
SIGNIFICANT_R2 = 0.3
RELIABLE_FORECAST_R2 = 0.5
WEEKLY_SPREAD_THRESHOLD = 0.5


def _linear_regression(x: np.ndarray, y: np.ndarray):
    """Closed-form least squares; flat fit through mean(y) when all x equal."""
    n = len(x)
    sum_x = float(x.sum())
    sum_y = float(y.sum())
    sum_xy = float(np.dot(x, y))
    sum_x2 = float(np.dot(x, x))

    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0, sum_y / n
    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def _r_squared(x: np.ndarray, y: np.ndarray, slope: float, intercept: float) -> float:
    # exact zero-variance check; mean subtraction can leave 1e-17 residue
    if np.ptp(y) == 0:
        return 0.0
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot == 0:
        return 0.0
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    return min(1.0, max(0.0, 1.0 - ss_res / ss_tot))


def _classify(slope: float, r_squared: float) -> TrendClassification:
    if r_squared < NO_TREND_R2:
        return TrendClassification.NO_TREND
    if slope > SLOPE_EPSILON:
        return TrendClassification.INCREASING
    if slope < -SLOPE_EPSILON:
        return TrendClassification.DECREASING
    return TrendClassification.STABLE


def calculate_trend(series: Sequence[NumericPoint]) -> TrendResult:
    """Fit value = slope · days_since_first + intercept."""
    n = len(series)
    if n < MIN_TREND_POINTS:
        span = (series[-1].date - series[0].date).days if n else 0
        return TrendResult(
            slope=0.0,
            intercept=0.0,
            r_squared=0.0,
            classification=TrendClassification.INSUFFICIENT_DATA,
            period_days=span,
            data_points=n,
        )

    first = series[0].date
    x = np.array([(p.date - first).days for p in series], dtype=np.float64)
    y = np.array([p.value for p in series], dtype=np.float64)

    slope, intercept = _linear_regression(x, y)
    r_squared = _r_squared(x, y, slope, intercept)

    return TrendResult(
        slope=slope,
        intercept=intercept,
        r_squared=r_squared,
        classification=_classify(slope, r_squared),
        period_days=(series[-1].date - first).days,
        data_points=n,
    )


def _slope_standard_error(r_squared: float, n: int) -> float:
    if r_squared >= 1.0 or n <= 2:
        return 1.0
    return math.sqrt((1 - r_squared) / (n - 2))


def assess_significance(trend: TrendResult) -> TrendResult:
    """Return a copy of ``trend`` with significant / t_statistic / standard_error set.

    Significant means |slope / SE| > 2 and R² > 0.3, where
    SE = sqrt((1 - R²) / (n - 2)).  A perfect fit (R² = 1) uses SE = 1.
    """
    n = trend.data_points
    if n < MIN_TREND_POINTS:
        return dataclasses.replace(trend, significant=False)

    standard_error = _slope_standard_error(trend.r_squared, n)
    t_stat = abs(trend.slope / standard_error)
    significant = t_stat > SIGNIFICANT_T and trend.r_squared > SIGNIFICANT_R2
    return dataclasses.replace(
        trend,
        significant=significant,
        t_statistic=t_stat,
        standard_error=standard_error,
    )


def _weekly_pattern(series: Sequence[NumericPoint]) -> List[WeeklyPattern]:
    by_weekday: Dict[int, List[float]] = defaultdict(list)
    for point in series:
        by_weekday[point.date.isoweekday()].append(point.value)
    if len(by_weekday) < MIN_WEEKDAYS:
        return []

    averages = tuple(
        (day, float(np.mean(values))) for day, values in sorted(by_weekday.items())
    )
    # population std of the per-weekday means
    spread = float(np.std([avg for _, avg in averages]))
    if spread > WEEKLY_SPREAD_THRESHOLD:
        return [WeeklyPattern(spread=spread, weekday_averages=averages)]
    return []


def _monthly_pattern(series: Sequence[NumericPoint]) -> List[WeeklyPattern]:
    # Not implemented: always empty.
    return []


def _seasonal_pattern(series: Sequence[NumericPoint]) -> List[WeeklyPattern]:
    # Not implemented: always empty.
    return []


def detect_patterns(series: Sequence[NumericPoint]) -> List[WeeklyPattern]:
    """Cyclic patterns in a series of at least 7 points.

    Only the weekly detector does anything; monthly and seasonal
    detection are placeholders that return nothing.
    """
    if len(series) < MIN_PATTERN_POINTS:
        return []
    return _weekly_pattern(series) + _monthly_pattern(series) + _seasonal_pattern(series)


def forecast(trend: TrendResult, days_ahead: int) -> Forecast:
    """Extrapolate ``days_ahead`` past the last observed day."""
    if not trend.significant:
        return Forecast(predicted_value=None, confidence=0.0, days_ahead=days_ahead, reliable=False)

    predicted = trend.intercept + trend.slope * (trend.period_days + days_ahead)
    return Forecast(
        predicted_value=predicted,
        confidence=trend.r_squared,
        days_ahead=days_ahead,
        reliable=trend.r_squared > RELIABLE_FORECAST_R2,
    )
