"""
Result and input types shared by the analytics modules.

Observations are read-only snapshots handed over by the data store.
Everything else is produced by the engine and never mutated after
construction; a refresh builds new objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, FrozenSet, Hashable, Optional, Tuple, Union

MetricId = Hashable


class InvalidRangeError(ValueError):
    """A caller supplied a date range that cannot be analysed."""


class InsightTimeoutError(TimeoutError):
    """Insight generation did not finish before its deadline."""


class TrendClassification(str, Enum):
    NO_TREND = "no_trend"
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


class CorrelationStrength(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"
    NEGLIGIBLE = "negligible"


class StreakDirection(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    UNKNOWN = "unknown"


class CrossingDirection(str, Enum):
    UPWARD = "upward"
    DOWNWARD = "downward"


class RecommendationKind(str, Enum):
    CORRELATION = "correlation"
    TREND = "trend"
    OPTIMIZATION = "optimization"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return value


# ─── Inputs ───────────────────────────────────────────────────


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range. ``end`` before ``start`` is a caller bug."""

    start: date
    end: date

    def __post_init__(self):
        # datetime is a date subclass but does not compare with plain dates
        for name in ("start", "end"):
            value = getattr(self, name)
            if isinstance(value, datetime):
                object.__setattr__(self, name, value.date())
        if not isinstance(self.start, date) or not isinstance(self.end, date):
            raise InvalidRangeError(
                f"date range boundaries must be dates, got {self.start!r} / {self.end!r}"
            )
        if self.end < self.start:
            raise InvalidRangeError(f"date range ends ({self.end}) before it starts ({self.start})")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> Dict[str, str]:
        return {"start_date": self.start.isoformat(), "end_date": self.end.isoformat()}


@dataclass(frozen=True)
class Observation:
    metric_id: MetricId
    date: date
    raw_value: Any
    time: Optional[time] = None
    tags: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class NumericPoint:
    date: date
    value: float


# ─── Correlation / trend results ──────────────────────────────


@dataclass(frozen=True)
class CorrelationResult:
    metric_a: MetricId
    metric_b: MetricId
    coefficient: float
    sample_size: int
    strength: Optional[CorrelationStrength] = None
    interpretation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_a": _jsonable(self.metric_a),
            "metric_b": _jsonable(self.metric_b),
            "coefficient": self.coefficient,
            "sample_size": self.sample_size,
            "strength": _jsonable(self.strength),
            "interpretation": self.interpretation,
        }


@dataclass(frozen=True)
class TrendResult:
    slope: float
    intercept: float
    r_squared: float
    classification: TrendClassification
    period_days: int = 0
    data_points: int = 0
    significant: bool = False
    t_statistic: Optional[float] = None
    standard_error: Optional[float] = None
    metric_id: Optional[MetricId] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric_id": _jsonable(self.metric_id),
            "slope": self.slope,
            "intercept": self.intercept,
            "r_squared": self.r_squared,
            "classification": self.classification.value,
            "period_days": self.period_days,
            "data_points": self.data_points,
            "significant": self.significant,
            "t_statistic": self.t_statistic,
            "standard_error": self.standard_error,
        }


@dataclass(frozen=True)
class Forecast:
    predicted_value: Optional[float]
    confidence: float
    days_ahead: int
    reliable: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicted_value": self.predicted_value,
            "confidence": self.confidence,
            "days_ahead": self.days_ahead,
            "reliable": self.reliable,
        }


@dataclass(frozen=True)
class WeeklyPattern:
    """Day-of-week effect on one series (ISO weekdays, 1 = Monday)."""

    spread: float
    weekday_averages: Tuple[Tuple[int, float], ...]
    kind: str = field(default="weekly", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "spread": self.spread,
            "pattern": {str(day): avg for day, avg in self.weekday_averages},
        }


# ─── Behavioural patterns ─────────────────────────────────────


@dataclass(frozen=True)
class Streak:
    metric_id: MetricId
    length: int
    start_date: date
    end_date: date
    direction: StreakDirection
    kind: str = field(default="streak", init=False)


@dataclass(frozen=True)
class ThresholdCrossing:
    metric_id: MetricId
    direction: CrossingDirection
    threshold: float
    date: date
    value: float
    kind: str = field(default="threshold_crossing", init=False)


@dataclass(frozen=True)
class Habit:
    metric_id: MetricId
    day_of_week: int
    frequency: int
    consistency: float
    kind: str = field(default="habit", init=False)


@dataclass(frozen=True)
class Anomaly:
    metric_id: MetricId
    date: date
    value: float
    deviation: float
    kind: str = field(default="anomaly", init=False)


Pattern = Union[Streak, ThresholdCrossing, Habit, Anomaly]


def pattern_to_dict(pattern: Pattern) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": pattern.kind}
    for name in pattern.__dataclass_fields__:
        if name == "kind":
            continue
        out[name] = _jsonable(getattr(pattern, name))
    return out


# ─── Recommendations / bundle ─────────────────────────────────


@dataclass(frozen=True)
class Recommendation:
    kind: RecommendationKind
    priority: Priority
    message: str
    related_metric_ids: Tuple[MetricId, ...] = ()
    correlation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "priority": self.priority.value,
            "message": self.message,
            "metrics": _jsonable(list(self.related_metric_ids)),
            "correlation": self.correlation,
        }


@dataclass(frozen=True)
class InsightBundle:
    correlations: Tuple[CorrelationResult, ...]
    trends: Tuple[TrendResult, ...]
    patterns: Tuple[Pattern, ...]
    recommendations: Tuple[Recommendation, ...]
    generated_at: datetime
    date_range: Optional[DateRange] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlations": [c.to_dict() for c in self.correlations],
            "trends": [t.to_dict() for t in self.trends],
            "patterns": [pattern_to_dict(p) for p in self.patterns],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "generated_at": self.generated_at.isoformat(),
            "date_range": self.date_range.to_dict() if self.date_range else None,
        }

