"""
Recommendation synthesis from correlation and trend results.

Three passes, concatenated in this order and capped at 10:

  1. correlation   |r| > 0.5 pairs (high priority when positive)
  2. trend         one message per significant trend
  3. optimization  strong (r > 0.4) correlations touching a metric with a
                   significant rising trend (leverage) or falling trend
                   (remediation)

No priority re-ordering is applied; the cap keeps the first ten in
generation order.
"""

from __future__ import annotations

from typing import List, Sequence

from models import (
    CorrelationResult,
    Priority,
    Recommendation,
    RecommendationKind,
    TrendClassification,
    TrendResult,
)

MAX_RECOMMENDATIONS = 10
CORRELATION_REC_MIN_ABS_R = 0.5
OPTIMIZATION_MIN_R = 0.4

TREND_MESSAGES = {
    TrendClassification.INCREASING: (
        Priority.MEDIUM,
        "Great progress on this metric! Keep up the positive trend",
    ),
    TrendClassification.DECREASING: (
        Priority.HIGH,
        "This metric is declining - consider focusing attention here",
    ),
    TrendClassification.STABLE: (
        Priority.LOW,
        "This metric is stable - maintain current approach",
    ),
}

LEVERAGE_MESSAGE = (
    "Your progress in one area is likely benefiting another - maximize this positive momentum"
)
REMEDIATION_MESSAGE = "Improving the correlated metric might help address the declining trend"


def correlation_recommendations(correlations: Sequence[CorrelationResult]) -> List[Recommendation]:
    out: List[Recommendation] = []
    for corr in correlations:
        if abs(corr.coefficient) <= CORRELATION_REC_MIN_ABS_R:
            continue
        if corr.coefficient > 0:
            out.append(Recommendation(
                kind=RecommendationKind.CORRELATION,
                priority=Priority.HIGH,
                message=f"Improving {corr.metric_a} may positively impact {corr.metric_b}",
                related_metric_ids=(corr.metric_a, corr.metric_b),
                correlation=corr.coefficient,
            ))
        else:
            out.append(Recommendation(
                kind=RecommendationKind.CORRELATION,
                priority=Priority.MEDIUM,
                message=(
                    f"{corr.metric_a} and {corr.metric_b} show negative correlation"
                    " - balance is important"
                ),
                related_metric_ids=(corr.metric_a, corr.metric_b),
                correlation=corr.coefficient,
            ))
    return out


def trend_recommendations(trends: Sequence[TrendResult]) -> List[Recommendation]:
    out: List[Recommendation] = []
    for trend in trends:
        if not trend.significant or trend.classification not in TREND_MESSAGES:
            continue
        priority, message = TREND_MESSAGES[trend.classification]
        related = (trend.metric_id,) if trend.metric_id is not None else ()
        out.append(Recommendation(
            kind=RecommendationKind.TREND,
            priority=priority,
            message=message,
            related_metric_ids=related,
        ))
    return out


def _touching(correlations: Sequence[CorrelationResult], metric_ids: set, message: str) -> List[Recommendation]:
    return [
        Recommendation(
            kind=RecommendationKind.OPTIMIZATION,
            priority=Priority.HIGH,
            message=message,
            related_metric_ids=(corr.metric_a, corr.metric_b),
            correlation=corr.coefficient,
        )
        for corr in correlations
        if corr.coefficient > OPTIMIZATION_MIN_R
        and (corr.metric_a in metric_ids or corr.metric_b in metric_ids)
    ]


def optimization_recommendations(
    correlations: Sequence[CorrelationResult],
    trends: Sequence[TrendResult],
) -> List[Recommendation]:
    rising = {
        t.metric_id for t in trends
        if t.significant and t.classification == TrendClassification.INCREASING
    }
    falling = {
        t.metric_id for t in trends
        if t.significant and t.classification == TrendClassification.DECREASING
    }
    return (
        _touching(correlations, rising, LEVERAGE_MESSAGE)
        + _touching(correlations, falling, REMEDIATION_MESSAGE)
    )


def generate_recommendations(
    correlations: Sequence[CorrelationResult],
    trends: Sequence[TrendResult],
) -> List[Recommendation]:
    recommendations = (
        correlation_recommendations(correlations)
        + trend_recommendations(trends)
        + optimization_recommendations(correlations, trends)
    )
    return recommendations[:MAX_RECOMMENDATIONS]
