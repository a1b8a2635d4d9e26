"""
Descriptive statistics over latency sequences.

Every function is pure: inputs are never mutated (sorting happens on a copy)
and degenerate input (empty, too short, zero spread) yields 0 instead of an
exception or a NaN.
"""
import math
from typing import Sequence

from rpcbench.metrics.models import LatencyDistribution, Outlier

# Tukey fence multiplier
OUTLIER_FENCE = 1.5


def percentile(values: Sequence[float], p: float) -> float:
    """
    Linearly interpolated percentile.

    The rank is ``p/100 * (n-1)`` over the ascending order; the result
    interpolates between the values at the floor and ceil ranks, so
    ``percentile(v, 0) == min(v)`` and ``percentile(v, 100) == max(v)``.
    """
    if not values or math.isnan(p):
        return 0.0

    ordered = sorted(values)
    p = min(max(p, 0.0), 100.0)
    index = p / 100.0 * (len(ordered) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)

    if lower == upper:
        return float(ordered[lower])

    weight = index - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return math.fsum(values) / len(values)


def variance(values: Sequence[float], mean: float) -> float:
    """Sample variance (divisor n-1)."""
    if len(values) <= 1:
        return 0.0
    return math.fsum((v - mean) ** 2 for v in values) / (len(values) - 1)


def std_dev(variance: float) -> float:
    if variance <= 0:
        return 0.0
    return math.sqrt(variance)


def skewness(values: Sequence[float], mean: float, std_dev: float) -> float:
    """Adjusted Fisher-Pearson sample skewness."""
    n = len(values)
    if n < 3 or std_dev == 0:
        return 0.0

    total = math.fsum(((v - mean) / std_dev) ** 3 for v in values)
    return n / ((n - 1) * (n - 2)) * total


def kurtosis(values: Sequence[float], mean: float, std_dev: float) -> float:
    """Sample excess kurtosis (0 for a normal distribution)."""
    n = len(values)
    if n < 4 or std_dev == 0:
        return 0.0

    total = math.fsum(((v - mean) / std_dev) ** 4 for v in values)
    factor1 = n * (n + 1) / ((n - 1) * (n - 2) * (n - 3))
    factor2 = 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))
    return factor1 * total - factor2


def iqr(values: Sequence[float]) -> float:
    """Interquartile range."""
    if len(values) < 4:
        return 0.0
    return percentile(values, 75) - percentile(values, 25)


def mad(values: Sequence[float]) -> float:
    """Median absolute deviation from the median."""
    if not values:
        return 0.0
    median = percentile(values, 50)
    return percentile([abs(v - median) for v in values], 50)


def coeff_var(mean: float, std_dev: float) -> float:
    """Coefficient of variation as a percentage."""
    if mean == 0:
        return 0.0
    return std_dev / abs(mean) * 100


def detect_outliers(values: Sequence[float]) -> list[Outlier]:
    """Values outside the Tukey fences, in input order, with their positions."""
    if len(values) < 4:
        return []

    q1 = percentile(values, 25)
    q3 = percentile(values, 75)
    spread = q3 - q1
    lower_bound = q1 - OUTLIER_FENCE * spread
    upper_bound = q3 + OUTLIER_FENCE * spread

    return [
        Outlier(index=i, value=v)
        for i, v in enumerate(values)
        if v < lower_bound or v > upper_bound
    ]


def jitter(values: Sequence[float]) -> float:
    """
    Mean absolute difference between consecutive values in input order.

    Unlike variance this depends on ordering, so it should be fed latencies
    in the order the requests were issued.
    """
    if len(values) < 2:
        return 0.0
    return math.fsum(abs(b - a) for a, b in zip(values, values[1:])) / (len(values) - 1)


def summarize(values: Sequence[float]) -> LatencyDistribution:
    """Full distribution summary of raw per-request latencies; non-finite values are dropped."""
    clean = [float(v) for v in values if math.isfinite(v)]
    if not clean:
        return LatencyDistribution()

    avg = mean(clean)
    var = variance(clean, avg)
    sd = std_dev(var)

    return LatencyDistribution(
        count=len(clean),
        min=min(clean),
        max=max(clean),
        mean=avg,
        p50=percentile(clean, 50),
        p75=percentile(clean, 75),
        p90=percentile(clean, 90),
        p95=percentile(clean, 95),
        p99=percentile(clean, 99),
        p999=percentile(clean, 99.9),
        variance=var,
        std_dev=sd,
        coeff_var=coeff_var(avg, sd),
        skewness=skewness(clean, avg, sd),
        kurtosis=kurtosis(clean, avg, sd),
        iqr=iqr(clean),
        mad=mad(clean),
        jitter=jitter(clean),
        outliers=detect_outliers(clean),
    )
