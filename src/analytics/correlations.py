"""
Correlation statistics for pairs of metric series.

Pearson product-moment + Spearman rank correlation, a t-test style
significance check and a plain-language interpretation.

Degenerate inputs (fewer than 3 points, a constant side) give r = 0.0
instead of raising: sparse early data is normal, not an error.
Alignment by date is the caller's job; these primitives only truncate
both sides to their shared prefix.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Sequence

import numpy as np
from scipy import stats as sp_stats

from models import CorrelationStrength

MIN_POINTS = 3

# |t| → approximate two-sided p-value (normal critical values)
P_VALUE_STEPS = [
    (2.576, 0.01),
    (1.96, 0.05),
    (1.645, 0.10),
]
P_VALUE_FLOOR = 0.20
SIGNIFICANCE_LEVEL = 0.05

# Lower bounds (inclusive) on |r| for each strength tier
STRENGTH_TIERS = [
    (0.7, CorrelationStrength.STRONG),
    (0.4, CorrelationStrength.MODERATE),
    (0.2, CorrelationStrength.WEAK),
]


def _aligned(xs: Sequence[float], ys: Sequence[float]):
    n = min(len(xs), len(ys))
    x = np.asarray(list(xs)[:n], dtype=np.float64)
    y = np.asarray(list(ys)[:n], dtype=np.float64)
    return x, y


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson r over the shared prefix of ``xs`` and ``ys``.

    Returns 0.0 for fewer than 3 paired points or when either side is
    constant.
    """
    x, y = _aligned(xs, ys)
    if len(x) < MIN_POINTS:
        return 0.0
    # exact zero-variance check; mean subtraction can leave 1e-17 residue
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0

    dx = x - x.mean()
    dy = y - y.mean()
    denominator = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if denominator == 0:
        return 0.0
    r = float(np.dot(dx, dy)) / denominator
    if not math.isfinite(r):
        return 0.0
    return max(-1.0, min(1.0, r))


def rank(values: Sequence[float]) -> List[int]:
    """1-based ranks; ties are broken by original position (no averaging)."""
    arr = np.asarray(list(values), dtype=np.float64)
    order = np.argsort(arr, kind="stable")
    ranks = np.empty(len(arr), dtype=np.int64)
    ranks[order] = np.arange(1, len(arr) + 1)
    return [int(r) for r in ranks]


def spearman_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Spearman rho: Pearson on the rank-transformed sequences."""
    return pearson_correlation(rank(xs), rank(ys))


def _approximate_p_value(abs_t: float) -> float:
    for critical, p in P_VALUE_STEPS:
        if abs_t > critical:
            return p
    return P_VALUE_FLOOR


def correlation_significance(r: float, n: int) -> Dict[str, Any]:
    """Test whether r differs from zero for a sample of size n.

    ``p_value`` comes from fixed normal critical values and drives
    ``significant``; ``exact_p_value`` is the two-sided Student-t tail
    probability with n-2 degrees of freedom, reported for reference.
    """
    if n < MIN_POINTS:
        return {
            "correlation": r,
            "sample_size": n,
            "t_statistic": 0.0,
            "p_value": 1.0,
            "exact_p_value": 1.0,
            "significant": False,
        }

    if r * r >= 1.0:
        t_stat = math.copysign(math.inf, r)
    else:
        t_stat = r * math.sqrt((n - 2) / (1 - r * r))

    p_value = _approximate_p_value(abs(t_stat))
    if math.isinf(t_stat):
        exact_p = 0.0
    else:
        exact_p = float(2 * sp_stats.t.sf(abs(t_stat), n - 2))

    return {
        "correlation": r,
        "sample_size": n,
        "t_statistic": t_stat,
        "p_value": p_value,
        "exact_p_value": exact_p,
        "significant": p_value < SIGNIFICANCE_LEVEL,
    }


def correlation_strength(r: float) -> CorrelationStrength:
    abs_r = abs(r)
    for bound, tier in STRENGTH_TIERS:
        if abs_r >= bound:
            return tier
    return CorrelationStrength.NEGLIGIBLE


def interpret_correlation(r: float, name_a: str, name_b: str) -> str:
    """e.g. "Sleep and Mood show a strong positive correlation (r = 0.812)"."""
    strength = correlation_strength(r).value
    direction = "positive" if r > 0 else "negative"
    return f"{name_a} and {name_b} show a {strength} {direction} correlation (r = {round(r, 3)})"
