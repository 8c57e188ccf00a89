"""Static 5-point SaaS benchmark table shipped with the engine.

Sources:
- OpenView SaaS Benchmarks 2024
- Bessemer State of the Cloud 2024
- KeyBanc SaaS Survey 2024

Rows carry p10/p25/median/p75/p90 per stage, independent of sector. They
back the reconciliation path of the benchmark service when the repository
has no exact match. Valuation multiples are kept per sector and stage.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

from dealscore.scoring.models import (
    BenchmarkEntry,
    MetricDirection,
    StageMetrics,
)
from dealscore.scoring.normalization import normalize_metric
from dealscore.scoring.numeric import clamp, round_half_up


class StaticStage(StrEnum):
    """Stage keys of the static table."""

    PRE_SEED = "pre_seed"
    SEED = "seed"
    SERIES_A = "series_a"
    SERIES_B = "series_b"
    SERIES_C = "series_c"
    GROWTH = "growth"


class StaticBenchmark(BaseModel):
    """One metric of the static table with per-stage 5-point anchors."""

    model_config = ConfigDict(frozen=True)

    metric: str
    display_name: str
    benchmark_name: str = Field(..., description="Canonical benchmark metric name")
    unit: str
    direction: MetricDirection
    by_stage: dict[StaticStage, StageMetrics]
    source: str
    last_updated: str = Field(..., description="Reporting period, e.g. 2024-Q4")


def _sm(p10: float, p25: float, median: float, p75: float, p90: float) -> StageMetrics:
    return StageMetrics(p10=p10, p25=p25, median=median, p75=p75, p90=p90)


_S = StaticStage

# Sector the static rows describe
STATIC_SECTOR: Final[str] = "SaaS B2B"

_OPENVIEW = "OpenView SaaS Benchmarks 2024"
_BESSEMER = "Bessemer State of the Cloud 2024"
_KEYBANC = "KeyBanc SaaS Survey 2024"

STATIC_BENCHMARKS: Final[tuple[StaticBenchmark, ...]] = (
    StaticBenchmark(
        metric="arr_growth_rate",
        display_name="ARR Growth Rate",
        benchmark_name="ARR Growth YoY",
        unit="%",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(50, 100, 150, 250, 400),
            _S.SERIES_A: _sm(40, 70, 100, 150, 200),
            _S.SERIES_B: _sm(30, 50, 70, 100, 150),
            _S.SERIES_C: _sm(25, 40, 50, 70, 100),
            _S.GROWTH: _sm(15, 25, 35, 50, 70),
        },
        source=_OPENVIEW,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="mrr_growth_rate",
        display_name="MRR Growth Rate (MoM)",
        benchmark_name="MRR Growth Rate",
        unit="%",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(5, 10, 15, 25, 40),
            _S.SERIES_A: _sm(3, 6, 10, 15, 25),
            _S.SERIES_B: _sm(2, 4, 7, 10, 15),
            _S.SERIES_C: _sm(1, 3, 5, 8, 12),
        },
        source=_OPENVIEW,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="revenue_per_employee",
        display_name="ARR per Employee",
        benchmark_name="Revenue per Employee",
        unit="KEUR",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(50, 80, 120, 180, 250),
            _S.SERIES_A: _sm(80, 120, 180, 250, 350),
            _S.SERIES_B: _sm(100, 150, 200, 280, 400),
            _S.SERIES_C: _sm(120, 180, 250, 350, 500),
        },
        source=_KEYBANC,
        last_updated="2024-Q3",
    ),
    StaticBenchmark(
        metric="net_revenue_retention",
        display_name="Net Revenue Retention (NRR)",
        benchmark_name="Net Revenue Retention",
        unit="%",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(80, 95, 105, 120, 140),
            _S.SERIES_A: _sm(90, 100, 110, 125, 145),
            _S.SERIES_B: _sm(95, 105, 115, 130, 150),
            _S.SERIES_C: _sm(100, 110, 120, 135, 155),
        },
        source=_BESSEMER,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="gross_revenue_retention",
        display_name="Gross Revenue Retention (GRR)",
        benchmark_name="Gross Revenue Retention",
        unit="%",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(70, 80, 88, 93, 97),
            _S.SERIES_A: _sm(75, 85, 90, 95, 98),
            _S.SERIES_B: _sm(80, 88, 92, 96, 99),
            _S.SERIES_C: _sm(85, 90, 94, 97, 99),
        },
        source=_BESSEMER,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="logo_churn_rate",
        display_name="Logo Churn Rate (Annual)",
        benchmark_name="Logo Churn Rate",
        unit="%",
        direction=MetricDirection.LOWER_BETTER,
        by_stage={
            _S.SEED: _sm(5, 10, 18, 30, 45),
            _S.SERIES_A: _sm(4, 8, 15, 25, 35),
            _S.SERIES_B: _sm(3, 6, 12, 20, 30),
            _S.SERIES_C: _sm(2, 5, 10, 15, 25),
        },
        source=_OPENVIEW,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="burn_multiple",
        display_name="Burn Multiple",
        benchmark_name="Burn Multiple",
        unit="x",
        direction=MetricDirection.LOWER_BETTER,
        by_stage={
            _S.SEED: _sm(0.5, 1.0, 2.0, 4.0, 8.0),
            _S.SERIES_A: _sm(0.5, 1.0, 1.5, 2.5, 5.0),
            _S.SERIES_B: _sm(0.3, 0.8, 1.2, 2.0, 3.5),
            _S.SERIES_C: _sm(0.2, 0.5, 1.0, 1.5, 2.5),
        },
        source="Bessemer Efficiency Score 2024",
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="rule_of_40",
        display_name="Rule of 40 Score",
        benchmark_name="Rule of 40",
        unit="%",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(-20, 0, 20, 50, 100),
            _S.SERIES_A: _sm(-10, 10, 30, 50, 80),
            _S.SERIES_B: _sm(0, 20, 40, 60, 80),
            _S.SERIES_C: _sm(10, 25, 40, 55, 75),
        },
        source=_BESSEMER,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="gross_margin",
        display_name="Gross Margin",
        benchmark_name="Gross Margin",
        unit="%",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(50, 60, 70, 80, 85),
            _S.SERIES_A: _sm(55, 65, 75, 82, 88),
            _S.SERIES_B: _sm(60, 70, 78, 84, 90),
            _S.SERIES_C: _sm(65, 72, 80, 85, 92),
        },
        source=_OPENVIEW,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="cac_payback_months",
        display_name="CAC Payback Period",
        benchmark_name="CAC Payback",
        unit="months",
        direction=MetricDirection.LOWER_BETTER,
        by_stage={
            _S.SEED: _sm(6, 12, 18, 30, 48),
            _S.SERIES_A: _sm(8, 14, 20, 30, 42),
            _S.SERIES_B: _sm(10, 16, 22, 32, 44),
            _S.SERIES_C: _sm(12, 18, 24, 34, 46),
        },
        source=_KEYBANC,
        last_updated="2024-Q3",
    ),
    StaticBenchmark(
        metric="ltv_cac_ratio",
        display_name="LTV:CAC Ratio",
        benchmark_name="LTV/CAC Ratio",
        unit="x",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(1.5, 2.5, 3.5, 5.0, 8.0),
            _S.SERIES_A: _sm(2.0, 3.0, 4.0, 6.0, 10.0),
            _S.SERIES_B: _sm(2.5, 3.5, 4.5, 6.5, 10.0),
            _S.SERIES_C: _sm(3.0, 4.0, 5.0, 7.0, 12.0),
        },
        source=_OPENVIEW,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="magic_number",
        display_name="Magic Number (Sales Efficiency)",
        benchmark_name="Magic Number",
        unit="x",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(0.3, 0.5, 0.8, 1.2, 2.0),
            _S.SERIES_A: _sm(0.4, 0.6, 0.9, 1.3, 1.8),
            _S.SERIES_B: _sm(0.5, 0.7, 1.0, 1.4, 1.8),
            _S.SERIES_C: _sm(0.5, 0.8, 1.0, 1.3, 1.7),
        },
        source=_BESSEMER,
        last_updated="2024-Q4",
    ),
    StaticBenchmark(
        metric="sales_efficiency",
        display_name="Sales Efficiency Ratio",
        benchmark_name="Sales Efficiency",
        unit="x",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(0.5, 1.0, 1.5, 2.5, 4.0),
            _S.SERIES_A: _sm(0.6, 1.0, 1.5, 2.0, 3.0),
            _S.SERIES_B: _sm(0.7, 1.0, 1.4, 2.0, 2.8),
            _S.SERIES_C: _sm(0.7, 1.0, 1.3, 1.8, 2.5),
        },
        source=_KEYBANC,
        last_updated="2024-Q3",
    ),
    StaticBenchmark(
        metric="acv",
        display_name="Average Contract Value",
        benchmark_name="Average Contract Value",
        unit="KEUR",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(2, 5, 12, 25, 50),
            _S.SERIES_A: _sm(5, 15, 30, 60, 120),
            _S.SERIES_B: _sm(10, 25, 50, 100, 200),
            _S.SERIES_C: _sm(20, 40, 80, 150, 300),
        },
        source=_KEYBANC,
        last_updated="2024-Q3",
    ),
    StaticBenchmark(
        metric="arr_per_fte",
        display_name="ARR per FTE",
        benchmark_name="ARR per FTE",
        unit="KEUR",
        direction=MetricDirection.HIGHER_BETTER,
        by_stage={
            _S.SEED: _sm(40, 70, 100, 150, 220),
            _S.SERIES_A: _sm(60, 100, 150, 220, 320),
            _S.SERIES_B: _sm(80, 130, 180, 260, 380),
            _S.SERIES_C: _sm(100, 160, 220, 300, 450),
        },
        source=_OPENVIEW,
        last_updated="2024-Q4",
    ),
)

_STATIC_BY_METRIC: Final[dict[str, StaticBenchmark]] = {b.metric: b for b in STATIC_BENCHMARKS}
_STATIC_BY_BENCHMARK_NAME: Final[dict[str, StaticBenchmark]] = {
    b.benchmark_name.casefold(): b for b in STATIC_BENCHMARKS
}

# Valuation multiples (EV / ARR) by sector and stage, 2024 deal data
VALUATION_MULTIPLES: Final[dict[str, dict[StaticStage, tuple[float, float, float]]]] = {
    "saas_b2b": {
        _S.SEED: (12, 20, 35),
        _S.SERIES_A: (8, 15, 25),
        _S.SERIES_B: (6, 12, 20),
        _S.SERIES_C: (5, 10, 18),
    },
    "fintech": {
        _S.SEED: (15, 25, 45),
        _S.SERIES_A: (10, 18, 30),
        _S.SERIES_B: (8, 15, 25),
        _S.SERIES_C: (6, 12, 22),
    },
    "marketplace": {
        _S.SEED: (8, 15, 30),
        _S.SERIES_A: (5, 12, 22),
        _S.SERIES_B: (4, 10, 18),
        _S.SERIES_C: (3, 8, 15),
    },
    "healthtech": {
        _S.SEED: (10, 18, 35),
        _S.SERIES_A: (8, 14, 25),
        _S.SERIES_B: (6, 12, 20),
        _S.SERIES_C: (5, 10, 18),
    },
    "deeptech": {
        _S.SEED: (15, 30, 60),
        _S.SERIES_A: (12, 22, 45),
        _S.SERIES_B: (10, 18, 35),
        _S.SERIES_C: (8, 15, 30),
    },
    "consumer": {
        _S.SEED: (5, 10, 20),
        _S.SERIES_A: (4, 8, 15),
        _S.SERIES_B: (3, 6, 12),
        _S.SERIES_C: (2, 5, 10),
    },
}

_SECTOR_TO_VALUATION_KEY: Final[dict[str, str]] = {
    "saas b2b": "saas_b2b",
    "saas": "saas_b2b",
    "software": "saas_b2b",
    "fintech": "fintech",
    "financial technology": "fintech",
    "marketplace": "marketplace",
    "healthtech": "healthtech",
    "health tech": "healthtech",
    "deeptech": "deeptech",
    "deep tech": "deeptech",
    "consumer": "consumer",
    "b2c": "consumer",
}

# Valuation tables start at seed and stop at series C
_VALUATION_STAGE: Final[dict[StaticStage, StaticStage]] = {
    _S.PRE_SEED: _S.SEED,
    _S.SEED: _S.SEED,
    _S.SERIES_A: _S.SERIES_A,
    _S.SERIES_B: _S.SERIES_B,
    _S.SERIES_C: _S.SERIES_C,
    _S.GROWTH: _S.SERIES_C,
}

_STATIC_STAGE_ALIASES: Final[dict[str, StaticStage]] = {
    "pre_seed": _S.PRE_SEED,
    "preseed": _S.PRE_SEED,
    "seed": _S.SEED,
    "series_a": _S.SERIES_A,
    "seriesa": _S.SERIES_A,
    "a": _S.SERIES_A,
    "series_b": _S.SERIES_B,
    "seriesb": _S.SERIES_B,
    "b": _S.SERIES_B,
    "series_c": _S.SERIES_C,
    "seriesc": _S.SERIES_C,
    "c": _S.SERIES_C,
    "growth": _S.GROWTH,
    "later": _S.GROWTH,
    "late": _S.GROWTH,
    "late_stage": _S.GROWTH,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_static_stage(stage: str) -> StaticStage | None:
    """Map free-form stage text onto a static-table stage, or None."""
    return _STATIC_STAGE_ALIASES.get(_NON_ALNUM.sub("_", stage.strip().lower()))


def find_static_benchmark(metric: str) -> StaticBenchmark | None:
    """Find a static metric by table key, canonical benchmark name, or alias."""
    key = metric.strip()
    direct = _STATIC_BY_METRIC.get(key.lower())
    if direct is not None:
        return direct
    return _STATIC_BY_BENCHMARK_NAME.get(normalize_metric(key).casefold())


def get_stage_metrics(metric: str, stage: str) -> StageMetrics | None:
    """Return the 5-point anchors of ``metric`` at ``stage``, or None."""
    static_stage = normalize_static_stage(stage)
    benchmark = find_static_benchmark(metric)
    if static_stage is None or benchmark is None:
        return None
    return benchmark.by_stage.get(static_stage)


def get_static_benchmarks_for_stage(stage: str) -> list[StaticBenchmark]:
    """All static metrics that have anchors for ``stage``."""
    static_stage = normalize_static_stage(stage)
    if static_stage is None:
        return []
    return [b for b in STATIC_BENCHMARKS if static_stage in b.by_stage]


def _parse_period(period: str) -> datetime | None:
    """Parse a 'YYYY-Qn' reporting period into the first day of that quarter."""
    match = re.fullmatch(r"(\d{4})-Q([1-4])", period)
    if match is None:
        return None
    year, quarter = int(match.group(1)), int(match.group(2))
    return datetime(year, 3 * (quarter - 1) + 1, 1, tzinfo=UTC)


def to_benchmark_entry(
    benchmark: StaticBenchmark, metrics: StageMetrics, *, stage: str, sector: str = STATIC_SECTOR
) -> BenchmarkEntry:
    """Express a static 5-point row as a BenchmarkEntry carrying p10/p90."""
    return BenchmarkEntry(
        sector=sector,
        stage=stage,
        metric=benchmark.benchmark_name,
        p25=metrics.p25,
        median=metrics.median,
        p75=metrics.p75,
        p10=metrics.p10,
        p90=metrics.p90,
        source=benchmark.source,
        updated_at=_parse_period(benchmark.last_updated),
    )


def calculate_static_percentile(
    value: float, metrics: StageMetrics, direction: MetricDirection
) -> int:
    """Direction-aware 5-point interpolation.

    Values at or beyond p10/p90 saturate at 5/95. For lower_better metrics
    the scale is inverted so a lower value yields a higher percentile.

    Args:
        value: Observed value.
        metrics: 5-point anchors.
        direction: Metric direction.

    Returns:
        Integer percentile in [5, 95].
    """
    points = (
        (10.0, metrics.p10),
        (25.0, metrics.p25),
        (50.0, metrics.median),
        (75.0, metrics.p75),
        (90.0, metrics.p90),
    )
    inverted = direction == MetricDirection.LOWER_BETTER

    if value <= metrics.p10:
        return 95 if inverted else 5
    if value >= metrics.p90:
        return 5 if inverted else 95

    for (lo_pct, lo_val), (hi_pct, hi_val) in zip(points, points[1:], strict=False):
        if lo_val <= value <= hi_val:
            width = hi_val - lo_val
            ratio = (value - lo_val) / width if width > 0 else 0.0
            if inverted:
                # mirror around the 50th percentile
                raw = 100.0 - (lo_pct + (hi_pct - lo_pct) * ratio)
            else:
                raw = lo_pct + (hi_pct - lo_pct) * ratio
            return int(round_half_up(raw))
    return 50


class ValuationVerdict(StrEnum):
    """Where a valuation multiple sits against its sector/stage peers."""

    CHEAP = "cheap"
    FAIR = "fair"
    EXPENSIVE = "expensive"
    VERY_EXPENSIVE = "very_expensive"


class ValuationAssessment(BaseModel):
    """Valuation multiple compared to sector/stage multiples."""

    model_config = ConfigDict(frozen=True)

    percentile: int = Field(..., ge=0, le=100)
    verdict: ValuationVerdict
    p25: float
    median: float
    p75: float


def get_valuation_multiples(sector: str, stage: str) -> tuple[float, float, float] | None:
    """Return (p25, median, p75) valuation multiples for a sector/stage."""
    sector_key = _SECTOR_TO_VALUATION_KEY.get(sector.strip().casefold())
    static_stage = normalize_static_stage(stage)
    if sector_key is None or static_stage is None:
        return None
    return VALUATION_MULTIPLES[sector_key].get(_VALUATION_STAGE[static_stage])


def assess_valuation(multiple: float, sector: str, stage: str) -> ValuationAssessment | None:
    """Position a valuation multiple against sector/stage multiples.

    Below p25 the percentile scales linearly from 0; above p75 it is capped
    one (median, p75) segment beyond, i.e. at 100.

    Returns:
        ValuationAssessment, or None when the sector/stage is not covered.
    """
    anchors = get_valuation_multiples(sector, stage)
    if anchors is None:
        return None
    p25, median, p75 = anchors

    if multiple <= p25:
        raw = 25.0 * (multiple / p25)
        verdict = ValuationVerdict.CHEAP
    elif multiple <= median:
        raw = 25.0 + 25.0 * (multiple - p25) / (median - p25)
        verdict = ValuationVerdict.FAIR
    elif multiple <= p75:
        raw = 50.0 + 25.0 * (multiple - median) / (p75 - median)
        verdict = ValuationVerdict.EXPENSIVE
    else:
        raw = 75.0 + 25.0 * min(1.0, (multiple - p75) / (p75 - median))
        verdict = ValuationVerdict.VERY_EXPENSIVE

    return ValuationAssessment(
        percentile=int(round_half_up(clamp(raw))),
        verdict=verdict,
        p25=p25,
        median=median,
        p75=p75,
    )
