"""Scoring engine domain models.

Defines the benchmark-anchored scoring models:
- Stage / Dimension / FindingCategory: fixed vocabularies
- MetricDefinition: registry entry describing how a metric is scored
- BenchmarkEntry / StageMetrics: benchmark anchors (3-point and 5-point)
- BenchmarkLookupResult / PercentileResult: benchmark comparison output
- ConfidenceFactor / ConfidenceScore: multi-factor confidence
- MetricObservation: raw input from upstream observation producers
- ScoredFinding: one normalized, benchmarked, confidence-scored observation
- DimensionWeights / DimensionScore / ObjectiveDealScore: aggregation output

All models are immutable after construction. Derived values are recomputed,
never mutated.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, model_validator

WEIGHT_SUM_TOLERANCE: Final[float] = 0.001

CONFIDENCE_HIGH_THRESHOLD: Final[int] = 75
CONFIDENCE_MEDIUM_THRESHOLD: Final[int] = 50
CONFIDENCE_LOW_THRESHOLD: Final[int] = 25


class Stage(StrEnum):
    """Investment stage, in ordinal order."""

    PRE_SEED = "PRE_SEED"
    SEED = "SEED"
    SERIES_A = "SERIES_A"
    SERIES_B = "SERIES_B"
    SERIES_C = "SERIES_C"
    LATER = "LATER"


STAGE_ORDER: Final[tuple[Stage, ...]] = tuple(Stage)


class Dimension(StrEnum):
    """Evaluation axes that findings roll up into."""

    TEAM = "team"
    FINANCIALS = "financials"
    MARKET = "market"
    PRODUCT_TECH = "product_tech"
    GTM_TRACTION = "gtm_traction"
    COMPETITIVE = "competitive"
    EXIT_POTENTIAL = "exit_potential"


ALL_DIMENSIONS: Final[frozenset[Dimension]] = frozenset(Dimension)


class FindingCategory(StrEnum):
    """Category of an observed metric as reported by its producer."""

    FINANCIAL = "financial"
    TEAM = "team"
    MARKET = "market"
    PRODUCT = "product"
    COMPETITIVE = "competitive"
    LEGAL = "legal"
    TECHNICAL = "technical"
    GTM = "gtm"
    CUSTOMER = "customer"
    EXIT = "exit"
    STRUCTURE = "structure"


class MetricDirection(StrEnum):
    """Which way a metric is better."""

    HIGHER_BETTER = "higher_better"
    LOWER_BETTER = "lower_better"
    TARGET_RANGE = "target_range"


class CalculationType(StrEnum):
    """How a metric value is obtained."""

    DIRECT = "direct"
    DERIVED = "derived"
    COMPOSITE = "composite"


class PercentileAssessment(StrEnum):
    """Benchmark-relative assessment category."""

    EXCEPTIONAL = "exceptional"
    ABOVE_AVERAGE = "above_average"
    AVERAGE = "average"
    BELOW_AVERAGE = "below_average"
    POOR = "poor"
    SUSPICIOUS = "suspicious"


class FallbackTier(StrEnum):
    """Which level of the benchmark lookup cascade produced a result."""

    EXACT = "exact"
    NEAREST_STAGE = "nearest_stage"
    GENERIC_SECTOR = "generic_sector"
    GENERIC_SECTOR_ANY_STAGE = "generic_sector_any_stage"
    STATIC_TABLE = "static_table"


class BenchmarkOrigin(StrEnum):
    """Where a benchmark came from."""

    REPOSITORY = "repository"
    STATIC = "static"


class ConfidenceLevel(StrEnum):
    """Discrete confidence level derived from a 0-100 score."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INSUFFICIENT = "insufficient"


class EvidenceType(StrEnum):
    """Kind of evidence attached to an observation."""

    QUOTE = "quote"
    CALCULATION = "calculation"
    BENCHMARK = "benchmark"
    EXTERNAL_DATA = "external_data"
    INFERENCE = "inference"


class DataReliability(StrEnum):
    """Reliability class declared by the observation producer."""

    AUDITED = "AUDITED"
    VERIFIED = "VERIFIED"
    DECLARED = "DECLARED"
    PROJECTED = "PROJECTED"
    ESTIMATED = "ESTIMATED"
    UNVERIFIABLE = "UNVERIFIABLE"


def score_to_level(score: float) -> ConfidenceLevel:
    """Map a numeric confidence score to its level.

    Non-decreasing step function: >=75 high, >=50 medium, >=25 low,
    otherwise insufficient.
    """
    if score >= CONFIDENCE_HIGH_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= CONFIDENCE_MEDIUM_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    if score >= CONFIDENCE_LOW_THRESHOLD:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.INSUFFICIENT


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------


class TargetRange(BaseModel):
    """Closed interval a target_range metric should fall into."""

    model_config = ConfigDict(frozen=True)

    min: float = Field(..., description="Lower bound of the target range")
    max: float = Field(..., description="Upper bound of the target range")

    @model_validator(mode="after")
    def _ordered(self) -> TargetRange:
        if self.min > self.max:
            raise ValueError(f"Target range min {self.min} exceeds max {self.max}")
        return self


class MetricDefinition(BaseModel):
    """Registry entry describing how a metric is validated and scored."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique metric key")
    display_name: str = Field(..., min_length=1, description="Human-readable name")
    category: FindingCategory = Field(..., description="Finding category")
    dimension: Dimension = Field(..., description="Dimension the metric rolls up into")
    weight: float = Field(..., ge=0.0, le=1.0, description="Relative weight within dimension")
    direction: MetricDirection = Field(..., description="Which way the metric is better")
    target_range: TargetRange | None = Field(
        default=None, description="Target interval for target_range metrics"
    )
    min_value: float | None = Field(default=None, description="Lowest plausible value")
    max_value: float | None = Field(default=None, description="Highest plausible value")
    unit: str = Field(..., description="Unit of measure")
    benchmark_metric_name: str = Field(..., min_length=1, description="Benchmark lookup key")
    calculation_type: CalculationType = Field(
        default=CalculationType.DIRECT, description="How the value is obtained"
    )
    formula: str | None = Field(default=None, description="Formula for derived metrics")
    dependencies: tuple[str, ...] = Field(
        default=(), description="Input metrics for composite/derived metrics"
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> MetricDefinition:
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValueError(
                f"Metric '{self.name}' min_value {self.min_value} exceeds max_value "
                f"{self.max_value}"
            )
        return self


# ---------------------------------------------------------------------------
# Benchmarks
# ---------------------------------------------------------------------------


class BenchmarkEntry(BaseModel):
    """Benchmark anchors for one (sector, stage, metric).

    Repository rows carry p25/median/p75. Rows synthesized from the static
    5-point table also carry p10/p90.
    """

    model_config = ConfigDict(frozen=True)

    sector: str = Field(..., min_length=1, description="Canonical sector name")
    stage: str = Field(..., min_length=1, description="Canonical stage name")
    metric: str = Field(..., min_length=1, description="Canonical benchmark metric name")
    p25: float = Field(..., description="25th percentile anchor")
    median: float = Field(..., description="50th percentile anchor")
    p75: float = Field(..., description="75th percentile anchor")
    source: str = Field(..., description="Source citation")
    updated_at: datetime | None = Field(default=None, description="Last update of the row")
    p10: float | None = Field(default=None, description="10th percentile anchor (static rows)")
    p90: float | None = Field(default=None, description="90th percentile anchor (static rows)")

    @model_validator(mode="after")
    def _anchors_ordered(self) -> BenchmarkEntry:
        if not (self.p25 <= self.median <= self.p75):
            raise ValueError(
                f"Benchmark anchors must satisfy p25 <= median <= p75 "
                f"(got {self.p25}, {self.median}, {self.p75})"
            )
        return self

    @property
    def cache_key(self) -> str:
        """Key used by the benchmark cache: ``sector:stage:metric``."""
        return benchmark_key(self.sector, self.stage, self.metric)

    @property
    def iqr(self) -> float:
        """Interquartile range p75 - p25."""
        return self.p75 - self.p25


def benchmark_key(sector: str, stage: str, metric: str) -> str:
    """Build the ``sector:stage:metric`` cache key."""
    return f"{sector}:{stage}:{metric}"


class StageMetrics(BaseModel):
    """Static 5-point benchmark anchors for one stage."""

    model_config = ConfigDict(frozen=True)

    p10: float
    p25: float
    median: float
    p75: float
    p90: float


class BenchmarkLookupResult(BaseModel):
    """Outcome of a benchmark lookup through the fallback cascade."""

    model_config = ConfigDict(frozen=True)

    found: bool = Field(..., description="Whether any benchmark was found")
    exact: bool = Field(..., description="True only for an exact sector/stage/metric hit")
    benchmark: BenchmarkEntry | None = Field(default=None, description="Benchmark used")
    fallback_used: str | None = Field(
        default=None, description="Fallback label, e.g. 'stage_fallback:SEED'"
    )
    fallback_tier: FallbackTier | None = Field(
        default=None, description="Cascade tier that produced the result"
    )
    origin: BenchmarkOrigin | None = Field(default=None, description="Repository or static")
    stale: bool = Field(default=False, description="Served from a stale benchmark cache")


class PercentileResult(BaseModel):
    """Benchmark-relative percentile of a value."""

    model_config = ConfigDict(frozen=True)

    percentile: int = Field(..., ge=0, le=100, description="Percentile 0-100 (clamped)")
    assessment: PercentileAssessment = Field(..., description="Assessment category")
    interpolated: bool = Field(..., description="Computed by interpolation/extrapolation")
    benchmark_used: BenchmarkEntry = Field(..., description="Benchmark the value was compared to")


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


class ConfidenceFactor(BaseModel):
    """One named, weighted input to a confidence score."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0.0, le=1.0)
    score: float = Field(..., ge=0.0, le=100.0)
    reason: str = Field(..., description="Human-readable justification")


class ConfidenceScore(BaseModel):
    """Multi-factor confidence score.

    The level is a pure function of the score; constructing a score with a
    mismatching level fails validation.
    """

    model_config = ConfigDict(frozen=True)

    level: ConfidenceLevel
    score: int = Field(..., ge=0, le=100)
    factors: tuple[ConfidenceFactor, ...] = ()

    @model_validator(mode="after")
    def _level_matches_score(self) -> ConfidenceScore:
        expected = score_to_level(self.score)
        if self.level != expected:
            raise ValueError(
                f"Confidence level {self.level.value} does not match score {self.score} "
                f"(expected {expected.value})"
            )
        return self

    @classmethod
    def from_score(
        cls, score: int, factors: tuple[ConfidenceFactor, ...] = ()
    ) -> ConfidenceScore:
        """Build a ConfidenceScore whose level is derived from ``score``."""
        return cls(level=score_to_level(score), score=score, factors=factors)


class ConfidenceContext(BaseModel):
    """Context used to derive confidence factors for a finding."""

    model_config = ConfigDict(frozen=True)

    has_direct_evidence: bool = False
    has_benchmark_match: bool = False
    source_count: int = Field(default=0, ge=0)
    data_age_days: float | None = Field(default=None, ge=0.0)
    is_verified: bool = False


# ---------------------------------------------------------------------------
# Observations and findings
# ---------------------------------------------------------------------------


class Evidence(BaseModel):
    """One piece of evidence supporting an observation."""

    model_config = ConfigDict(frozen=True)

    type: EvidenceType
    content: str
    source: str
    confidence: float = Field(..., ge=0.0, le=1.0, description="Per-evidence confidence 0-1")


class MetricObservation(BaseModel):
    """Raw metric observation produced upstream."""

    model_config = ConfigDict(frozen=True)

    metric: str = Field(..., min_length=1, description="Metric name as reported")
    category: FindingCategory
    value: float | str | None = Field(default=None, description="Observed value")
    unit: str = ""
    source: str = Field(default="unknown", description="Originating producer")
    evidence: tuple[Evidence, ...] = ()
    source_count: int = Field(default=0, ge=0)
    data_age_days: float | None = Field(default=None, ge=0.0)
    data_reliability: DataReliability | None = None
    is_verified: bool | None = Field(
        default=None, description="Explicit verification flag; derived from reliability if unset"
    )


class FindingDraft(BaseModel):
    """Partial finding used to derive confidence before the finding is final."""

    model_config = ConfigDict(frozen=True)

    value: float | str | None = None
    evidence: tuple[Evidence, ...] = ()
    benchmark: BenchmarkEntry | None = None


class FindingFlag(StrEnum):
    """Explicit, auditable degradations applied while scoring a finding."""

    UNKNOWN_METRIC = "unknown_metric"
    OUT_OF_BOUNDS = "out_of_bounds"
    NO_BENCHMARK = "no_benchmark"
    NON_NUMERIC_VALUE = "non_numeric_value"
    MISSING_VALUE = "missing_value"
    STALE_BENCHMARK = "stale_benchmark"


class ScoredFinding(BaseModel):
    """One normalized, benchmark-compared, confidence-scored observation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    source: str = Field(..., description="Originating producer")
    metric: str = Field(..., min_length=1)
    category: FindingCategory
    value: float | str | None
    unit: str = ""
    normalized_value: float | None = Field(default=None, ge=0.0, le=100.0)
    percentile: int | None = Field(default=None, ge=0, le=100)
    assessment: PercentileAssessment | None = None
    benchmark: BenchmarkEntry | None = None
    fallback_used: str | None = None
    confidence: ConfidenceScore
    evidence: tuple[Evidence, ...] = ()
    flags: tuple[FindingFlag, ...] = ()
    created_at: datetime


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class DimensionWeights(BaseModel):
    """Weight of each dimension in the global score. Sums to 1.00."""

    model_config = ConfigDict(frozen=True)

    weights: dict[Dimension, float]

    @model_validator(mode="after")
    def _validate_weights(self) -> DimensionWeights:
        missing = ALL_DIMENSIONS - set(self.weights)
        if missing:
            raise ValueError(f"Weights missing dimensions: {sorted(d.value for d in missing)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("Dimension weights must be non-negative")
        total = sum(self.weights.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"Weights must sum to 1.0 (got {total:.6f})")
        return self

    def __getitem__(self, dimension: Dimension) -> float:
        return self.weights[dimension]

    @property
    def total(self) -> float:
        return sum(self.weights.values())


class DimensionContributor(BaseModel):
    """How much one finding contributed to its dimension score."""

    model_config = ConfigDict(frozen=True)

    finding_id: str
    metric: str
    contribution: float
    confidence: ConfidenceLevel


class DimensionScore(BaseModel):
    """Aggregate score of one dimension.

    ``score`` is None when the dimension did not reach the minimum number of
    findings; such a dimension carries an insufficient confidence instead of a
    fabricated number.
    """

    model_config = ConfigDict(frozen=True)

    dimension: Dimension
    score: float | None = Field(default=None, ge=0.0, le=100.0)
    weight: float = Field(..., ge=0.0, le=1.0)
    findings: tuple[ScoredFinding, ...] = ()
    aggregated_confidence: ConfidenceScore
    contributors: tuple[DimensionContributor, ...] = ()
    sufficient_data: bool = True


class ExclusionReason(StrEnum):
    """Why a finding did not contribute (fully) to the score."""

    LOW_CONFIDENCE = "low_confidence"
    INSUFFICIENT_DIMENSION_DATA = "insufficient_dimension_data"
    MISSING_VALUE = "missing_value"
    NO_BENCHMARK = "no_benchmark"


class ExcludedFinding(BaseModel):
    """Ledger entry for a finding left out of (part of) the score."""

    model_config = ConfigDict(frozen=True)

    finding_id: str
    metric: str
    reason: ExclusionReason
    detail: str = ""


class AggregationResult(BaseModel):
    """Global score computation result."""

    model_config = ConfigDict(frozen=True)

    score: float | None
    confidence: ConfidenceScore
    included_findings: tuple[str, ...] = ()
    excluded_findings: tuple[ExcludedFinding, ...] = ()
    warnings: tuple[str, ...] = ()


class ScoreMetadata(BaseModel):
    """Bookkeeping carried alongside an ObjectiveDealScore for auditability."""

    model_config = ConfigDict(frozen=True)

    total_findings: int = Field(..., ge=0)
    high_confidence_findings: int = Field(..., ge=0)
    benchmarks_used: int = Field(..., ge=0)
    expected_variance: float = Field(..., ge=0.0)
    excluded_findings: tuple[ExcludedFinding, ...] = ()
    warnings: tuple[str, ...] = ()
    fallbacks_used: dict[str, str] = Field(
        default_factory=dict, description="Finding id -> benchmark fallback label"
    )
    benchmark_cache_stale: bool = False
    stage: Stage | None = None
    sector: str | None = None
    weights: DimensionWeights | None = None
    analysis_timestamp: datetime


class ObjectiveDealScore(BaseModel):
    """Terminal scoring artifact handed to downstream consumers."""

    model_config = ConfigDict(frozen=True)

    deal_id: str = Field(..., min_length=1)
    analysis_id: str = Field(..., min_length=1)
    global_score: float | None = Field(default=None, ge=0.0, le=100.0)
    global_confidence: ConfidenceScore
    dimensions: dict[Dimension, DimensionScore]
    findings: tuple[ScoredFinding, ...] = ()
    metadata: ScoreMetadata

    @model_validator(mode="after")
    def _require_all_dimensions(self) -> ObjectiveDealScore:
        missing = ALL_DIMENSIONS - set(self.dimensions)
        if missing:
            raise ValueError(
                f"Deal score missing required dimensions: {sorted(d.value for d in missing)}"
            )
        return self
