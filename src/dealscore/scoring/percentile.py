"""Three-anchor percentile interpolation against p25 / median / p75.

Anchors map to percentiles 25 / 50 / 75. Values between p25 and p75 are
linearly interpolated. Values outside are extrapolated with the slope of the
nearest segment and clamped to [0, 100]. A zero-width segment never divides:
it returns the boundary percentile (10 below, 90 above).

Assessment first flags IQR outliers (more than 3 x (p75 - p25) beyond either
anchor) as suspicious, independent of the computed percentile.
"""

from __future__ import annotations

import logging
from typing import Final

from dealscore.scoring.models import BenchmarkEntry, PercentileAssessment, PercentileResult
from dealscore.scoring.numeric import clamp, round_half_up

logger = logging.getLogger(__name__)

OUTLIER_IQR_MULTIPLIER: Final[float] = 3.0
DEGENERATE_LOW_PERCENTILE: Final[float] = 10.0
DEGENERATE_HIGH_PERCENTILE: Final[float] = 90.0

_ASSESSMENT_LADDER: Final[tuple[tuple[float, PercentileAssessment], ...]] = (
    (90.0, PercentileAssessment.EXCEPTIONAL),
    (75.0, PercentileAssessment.ABOVE_AVERAGE),
    (25.0, PercentileAssessment.AVERAGE),
    (10.0, PercentileAssessment.BELOW_AVERAGE),
)


def _raw_percentile(value: float, benchmark: BenchmarkEntry) -> tuple[float, bool]:
    """Return (percentile, interpolated) before rounding."""
    p25, median, p75 = benchmark.p25, benchmark.median, benchmark.p75

    if value <= p25:
        if value == p25:
            return 25.0, False
        lower_width = median - p25
        if lower_width > 0:
            return max(0.0, 25.0 - (p25 - value) / lower_width * 25.0), True
        logger.debug("Zero-width p25/median segment for %s, using boundary", benchmark.metric)
        return DEGENERATE_LOW_PERCENTILE, False

    if value <= median:
        # median > p25 here, otherwise value <= p25 would have matched
        return 25.0 + (value - p25) / (median - p25) * 25.0, value != median

    if value <= p75:
        return 50.0 + (value - median) / (p75 - median) * 25.0, value != p75

    upper_width = p75 - median
    if upper_width > 0:
        return min(100.0, 75.0 + (value - p75) / upper_width * 25.0), True
    logger.debug("Zero-width median/p75 segment for %s, using boundary", benchmark.metric)
    return DEGENERATE_HIGH_PERCENTILE, False


def is_iqr_outlier(value: float, benchmark: BenchmarkEntry) -> bool:
    """True when ``value`` lies more than 3 x IQR beyond p25 or p75."""
    fence = OUTLIER_IQR_MULTIPLIER * benchmark.iqr
    return value > benchmark.p75 + fence or value < benchmark.p25 - fence


def assess_percentile(
    percentile: float, value: float, benchmark: BenchmarkEntry
) -> PercentileAssessment:
    """Classify a percentile, checking for IQR outliers first.

    Args:
        percentile: Computed percentile 0-100.
        value: Raw value the percentile was computed from.
        benchmark: Benchmark the value was compared to.

    Returns:
        PercentileAssessment (suspicious for IQR outliers).
    """
    if is_iqr_outlier(value, benchmark):
        return PercentileAssessment.SUSPICIOUS
    for threshold, assessment in _ASSESSMENT_LADDER:
        if percentile >= threshold:
            return assessment
    return PercentileAssessment.POOR


def calculate_percentile(value: float, benchmark: BenchmarkEntry) -> PercentileResult:
    """Compute the benchmark-relative percentile of ``value``.

    Args:
        value: Raw observed value.
        benchmark: Benchmark with p25/median/p75 anchors.

    Returns:
        PercentileResult with an integer percentile clamped to [0, 100].
    """
    raw, interpolated = _raw_percentile(value, benchmark)
    percentile = int(round_half_up(clamp(raw)))
    return PercentileResult(
        percentile=percentile,
        assessment=assess_percentile(percentile, value, benchmark),
        interpolated=interpolated,
        benchmark_used=benchmark,
    )
