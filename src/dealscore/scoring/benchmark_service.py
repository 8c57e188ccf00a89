"""Benchmark service reconciling the repository cache with the static table.

Lookup order:
1. repository cascade; an exact hit is returned as is
2. otherwise the static 5-point table is consulted; a nearest-stage hit from
   the requested sector is preferred over it, any other repository fallback
   loses to a static hit, which is labelled static_table:<STAGE>
3. with no static hit, whatever the repository cascade produced is returned
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from dealscore.scoring.benchmark_cache import BenchmarkCache
from dealscore.scoring.models import (
    BenchmarkEntry,
    BenchmarkLookupResult,
    BenchmarkOrigin,
    FallbackTier,
    PercentileAssessment,
    PercentileResult,
)
from dealscore.scoring.normalization import normalize_sector, normalize_stage
from dealscore.scoring.static_benchmarks import (
    STATIC_SECTOR,
    ValuationAssessment,
    assess_valuation,
    calculate_static_percentile,
    find_static_benchmark,
    get_stage_metrics,
    get_static_benchmarks_for_stage,
    get_valuation_multiples,
    normalize_static_stage,
    to_benchmark_entry,
)

logger = logging.getLogger(__name__)


class MetricAssessment(BaseModel):
    """Quick benchmark assessment of a single metric value."""

    model_config = ConfigDict(frozen=True)

    percentile: int = Field(..., ge=0, le=100)
    assessment: PercentileAssessment
    benchmark: BenchmarkEntry
    comparison: str = Field(..., description="Position relative to p25/median/p75")
    fallback_used: str | None = None


def _fmt(value: float) -> str:
    return f"{value:g}"


def describe_position(value: float, benchmark: BenchmarkEntry) -> str:
    """Describe where ``value`` sits relative to the benchmark anchors."""
    p25, median, p75 = benchmark.p25, benchmark.median, benchmark.p75
    if value < p25:
        if p25 == 0:
            return f"Below P25 ({_fmt(p25)})"
        return f"{abs((p25 - value) / p25) * 100:.0f}% below P25 ({_fmt(p25)})"
    if value < median:
        return f"Between P25 ({_fmt(p25)}) and median ({_fmt(median)})"
    if value < p75:
        return f"Between median ({_fmt(median)}) and P75 ({_fmt(p75)})"
    if p75 == 0:
        return f"Above P75 ({_fmt(p75)})"
    return f"{abs((value - p75) / p75) * 100:.0f}% above P75 ({_fmt(p75)})"


class BenchmarkService:
    """Benchmark lookups across the repository cache and the static table."""

    def __init__(self, cache: BenchmarkCache) -> None:
        self._cache = cache

    @property
    def cache(self) -> BenchmarkCache:
        return self._cache

    def lookup_static(self, sector: str, stage: str, metric: str) -> BenchmarkLookupResult:
        """Look ``metric`` up in the static 5-point table.

        Static rows describe SaaS companies regardless of the requested
        sector. A hit is never exact: it is labelled ``static_table:<STAGE>``
        and its entry keeps the table's own sector.
        """
        static_stage = normalize_static_stage(stage)
        static = find_static_benchmark(metric)
        if static_stage is None or static is None:
            return BenchmarkLookupResult(found=False, exact=False)

        metrics = static.by_stage.get(static_stage)
        if metrics is None:
            return BenchmarkLookupResult(found=False, exact=False)

        norm_stage = normalize_stage(stage)
        if normalize_sector(sector).strip() != STATIC_SECTOR:
            logger.debug(
                "Static %s benchmarks used for sector %s, metric %s",
                STATIC_SECTOR, sector, metric,
            )
        return BenchmarkLookupResult(
            found=True,
            exact=False,
            benchmark=to_benchmark_entry(static, metrics, stage=norm_stage),
            fallback_used=f"{FallbackTier.STATIC_TABLE.value}:{norm_stage}",
            fallback_tier=FallbackTier.STATIC_TABLE,
            origin=BenchmarkOrigin.STATIC,
        )

    def lookup(self, sector: str, stage: str, metric: str) -> BenchmarkLookupResult:
        """Reconciled lookup across the repository cascade and the static table.

        Args:
            sector: Sector name (aliases accepted).
            stage: Stage name (aliases accepted).
            metric: Metric name (aliases accepted).

        Returns:
            The winning BenchmarkLookupResult. The repository staleness flag is
            carried over even when the static table wins.
        """
        primary = self._cache.lookup(sector, stage, metric)
        if primary.found and primary.exact:
            return primary

        static = self.lookup_static(sector, stage, metric)
        if not static.found:
            return primary

        if primary.found and primary.fallback_tier == FallbackTier.NEAREST_STAGE:
            return primary

        if primary.found:
            logger.debug(
                "Static benchmark preferred over %s for %s/%s/%s",
                primary.fallback_used, sector, stage, metric,
            )
        return static.model_copy(update={"stale": primary.stale})

    def calculate_percentile(self, value: float, benchmark: BenchmarkEntry) -> PercentileResult:
        """3-anchor percentile; used for every benchmark regardless of origin."""
        return self._cache.calculate_percentile(value, benchmark)

    def static_percentile(self, metric: str, value: float, stage: str) -> int | None:
        """Direction-aware 5-point percentile from the static table, or None."""
        static = find_static_benchmark(metric)
        metrics = get_stage_metrics(metric, stage)
        if static is None or metrics is None:
            return None
        return calculate_static_percentile(value, metrics, static.direction)

    def assess_metric(
        self, metric: str, value: float, sector: str, stage: str
    ) -> MetricAssessment | None:
        """Look up a benchmark and assess ``value`` against it.

        Returns:
            MetricAssessment, or None when no benchmark exists.
        """
        result = self.lookup(sector, stage, metric)
        if not result.found or result.benchmark is None:
            return None

        percentile = self.calculate_percentile(value, result.benchmark)
        return MetricAssessment(
            percentile=percentile.percentile,
            assessment=percentile.assessment,
            benchmark=result.benchmark,
            comparison=describe_position(value, result.benchmark),
            fallback_used=result.fallback_used,
        )

    def get_all_benchmarks(self, sector: str, stage: str) -> list[BenchmarkEntry]:
        """Repository rows for a sector/stage, topped up with static rows.

        Static metrics already present in the repository (by canonical
        benchmark name) are skipped.
        """
        norm_stage = normalize_stage(stage)
        results = [
            e for e in self._cache.get_benchmarks_for_sector(sector) if e.stage == norm_stage
        ]
        existing = {e.metric.casefold() for e in results}

        static_stage = normalize_static_stage(stage)
        if static_stage is None:
            return results

        for static in get_static_benchmarks_for_stage(stage):
            if static.benchmark_name.casefold() in existing:
                continue
            results.append(
                to_benchmark_entry(static, static.by_stage[static_stage], stage=norm_stage)
            )
        return results

    def get_valuation_multiples(self, sector: str, stage: str) -> tuple[float, float, float] | None:
        return get_valuation_multiples(sector, stage)

    def assess_valuation(
        self, multiple: float, sector: str, stage: str
    ) -> ValuationAssessment | None:
        return assess_valuation(multiple, sector, stage)
