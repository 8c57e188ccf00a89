"""Tests for three-anchor percentile interpolation.

Covers:
- Anchor values map exactly to 25 / 50 / 75
- Interpolation and extrapolation with clamping
- Zero-width segments return boundary percentiles without dividing
- IQR outliers are suspicious regardless of percentile
- Monotonicity over a sweep of values
"""

from __future__ import annotations

import pytest

from conftest import make_entry
from dealscore.scoring.models import BenchmarkEntry, PercentileAssessment
from dealscore.scoring.percentile import (
    assess_percentile,
    calculate_percentile,
    is_iqr_outlier,
)


class TestCalculatePercentile:
    """Tests against benchmark {p25: 100, median: 150, p75: 250}."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(100, 25), (150, 50), (250, 75)],
    )
    def test_anchors_exact(
        self, seed_benchmark: BenchmarkEntry, value: float, expected: int
    ) -> None:
        """Anchors map to 25, 50 and 75."""
        result = calculate_percentile(value, seed_benchmark)
        assert result.percentile == expected
        assert result.interpolated is False

    def test_between_p25_and_median(self, seed_benchmark: BenchmarkEntry) -> None:
        """Values between p25 and the median interpolate."""
        result = calculate_percentile(125, seed_benchmark)
        assert result.percentile == 38  # 37.5 rounds half-up
        assert result.interpolated is True
        assert result.assessment == PercentileAssessment.AVERAGE

    def test_between_median_and_p75(self, seed_benchmark: BenchmarkEntry) -> None:
        """Values between the median and p75 interpolate."""
        result = calculate_percentile(200, seed_benchmark)
        assert result.percentile == 63  # 62.5 rounds half-up
        assert result.assessment == PercentileAssessment.AVERAGE

    def test_extrapolated_above_p75_is_clamped(self, seed_benchmark: BenchmarkEntry) -> None:
        """Extrapolation above p75 is capped at 100."""
        result = calculate_percentile(400, seed_benchmark)
        assert result.percentile == 100
        assert result.interpolated is True
        assert result.assessment == PercentileAssessment.EXCEPTIONAL

    def test_extrapolated_below_p25(self, seed_benchmark: BenchmarkEntry) -> None:
        """Values below p25 extrapolate downwards."""
        result = calculate_percentile(90, seed_benchmark)
        assert result.percentile == 20
        assert result.assessment == PercentileAssessment.BELOW_AVERAGE

    def test_far_below_p25_floors_at_zero(self, seed_benchmark: BenchmarkEntry) -> None:
        """Far below p25 floors at zero."""
        result = calculate_percentile(50, seed_benchmark)
        assert result.percentile == 0
        assert result.assessment == PercentileAssessment.POOR

    def test_benchmark_is_carried(self, seed_benchmark: BenchmarkEntry) -> None:
        """The result carries the benchmark used."""
        assert calculate_percentile(120, seed_benchmark).benchmark_used == seed_benchmark


class TestDegenerateBenchmarks:
    """Zero-width segments never divide by zero."""

    def test_flat_lower_segment_below(self) -> None:
        """Below a flat lower segment gives the low boundary."""
        benchmark = make_entry(p25=100, median=100, p75=200)
        result = calculate_percentile(50, benchmark)
        assert result.percentile == 10
        assert result.interpolated is False

    def test_flat_lower_segment_at_anchor(self) -> None:
        """At a flat lower segment gives 25."""
        benchmark = make_entry(p25=100, median=100, p75=200)
        assert calculate_percentile(100, benchmark).percentile == 25

    def test_flat_upper_segment_above(self) -> None:
        """Above a flat upper segment gives the high boundary."""
        benchmark = make_entry(p25=100, median=200, p75=200)
        result = calculate_percentile(300, benchmark)
        assert result.percentile == 90
        assert result.assessment == PercentileAssessment.EXCEPTIONAL

    def test_fully_flat_benchmark(self) -> None:
        """A fully flat benchmark uses boundaries either side."""
        benchmark = make_entry(p25=5, median=5, p75=5)
        assert calculate_percentile(4, benchmark).percentile == 10
        assert calculate_percentile(5, benchmark).percentile == 25
        assert calculate_percentile(6, benchmark).percentile == 90


class TestOutliers:
    """IQR outliers (beyond 3 x IQR) are flagged suspicious."""

    def test_far_above_is_suspicious(self, seed_benchmark: BenchmarkEntry) -> None:
        """More than 3 x IQR above p75 is suspicious."""
        # IQR = 150, fence at 250 + 450
        assert is_iqr_outlier(701, seed_benchmark) is True
        assert is_iqr_outlier(700, seed_benchmark) is False
        result = calculate_percentile(701, seed_benchmark)
        assert result.percentile == 100
        assert result.assessment == PercentileAssessment.SUSPICIOUS

    def test_far_below_is_suspicious(self, seed_benchmark: BenchmarkEntry) -> None:
        """More than 3 x IQR below p25 is suspicious."""
        result = calculate_percentile(-351, seed_benchmark)
        assert result.percentile == 0
        assert result.assessment == PercentileAssessment.SUSPICIOUS

    def test_assessment_checks_outlier_first(self, seed_benchmark: BenchmarkEntry) -> None:
        """The outlier check runs before the percentile ladder."""
        assert assess_percentile(50, 10_000, seed_benchmark) == PercentileAssessment.SUSPICIOUS


class TestAssessmentLadder:
    """Tests for the percentile -> assessment ladder."""

    @pytest.mark.parametrize(
        ("percentile", "expected"),
        [
            (100, PercentileAssessment.EXCEPTIONAL),
            (90, PercentileAssessment.EXCEPTIONAL),
            (89, PercentileAssessment.ABOVE_AVERAGE),
            (75, PercentileAssessment.ABOVE_AVERAGE),
            (74, PercentileAssessment.AVERAGE),
            (25, PercentileAssessment.AVERAGE),
            (24, PercentileAssessment.BELOW_AVERAGE),
            (10, PercentileAssessment.BELOW_AVERAGE),
            (9, PercentileAssessment.POOR),
            (0, PercentileAssessment.POOR),
        ],
    )
    def test_ladder(
        self, seed_benchmark: BenchmarkEntry, percentile: int, expected: PercentileAssessment
    ) -> None:
        """Assessment ladder at 90, 75, 25 and 10."""
        assert assess_percentile(percentile, 150, seed_benchmark) == expected


class TestMonotonicity:
    """Percentile is non-decreasing in the value and always within [0, 100]."""

    @pytest.mark.parametrize(
        "anchors",
        [(100, 150, 250), (100, 100, 200), (100, 200, 200), (-20, 0, 35), (1, 1, 1)],
    )
    def test_non_decreasing(self, anchors: tuple[float, float, float]) -> None:
        """Percentile never decreases as the value rises."""
        benchmark = make_entry(p25=anchors[0], median=anchors[1], p75=anchors[2])
        values = [v / 2 for v in range(-1000, 1001, 7)]
        percentiles = [calculate_percentile(v, benchmark).percentile for v in values]

        assert all(0 <= p <= 100 for p in percentiles)
        assert percentiles == sorted(percentiles)
