"""Score aggregator: findings -> dimension scores -> global score.

- Findings without a usable value, or below the confidence floor, are left
  out and recorded in the excluded-findings ledger with their reason
- Remaining findings are grouped by their metric's dimension (category
  mapping for metrics the registry does not know)
- A dimension score is the mean of its findings' normalized values weighted
  by metric weight x confidence; a dimension with fewer than the minimum
  number of findings gets no score and an insufficient confidence
- The global score is the weighted mean over scored dimensions; the global
  confidence combines every dimension confidence
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from dealscore.config import (
    DEFAULT_CONFIDENCE_WEIGHTING,
    DEFAULT_MIN_CONFIDENCE_FOR_INCLUSION,
    DEFAULT_MIN_FINDINGS_PER_DIMENSION,
    ScoringConfig,
)
from dealscore.scoring.confidence import ConfidenceCalculator
from dealscore.scoring.metric_registry import MetricRegistry
from dealscore.scoring.models import (
    AggregationResult,
    ConfidenceFactor,
    ConfidenceLevel,
    ConfidenceScore,
    Dimension,
    DimensionContributor,
    DimensionScore,
    DimensionWeights,
    ExcludedFinding,
    ExclusionReason,
    FindingCategory,
    ObjectiveDealScore,
    ScoredFinding,
    ScoreMetadata,
    Stage,
)
from dealscore.scoring.numeric import round_half_up
from dealscore.scoring.stage_weights import get_weights_for_deal

logger = logging.getLogger(__name__)

DEFAULT_METRIC_WEIGHT: Final[float] = 0.1
MAX_EXPECTED_VARIANCE: Final[float] = 25.0

CATEGORY_DIMENSIONS: Final[dict[FindingCategory, Dimension]] = {
    FindingCategory.FINANCIAL: Dimension.FINANCIALS,
    FindingCategory.STRUCTURE: Dimension.FINANCIALS,
    FindingCategory.TEAM: Dimension.TEAM,
    FindingCategory.MARKET: Dimension.MARKET,
    FindingCategory.LEGAL: Dimension.MARKET,
    FindingCategory.PRODUCT: Dimension.PRODUCT_TECH,
    FindingCategory.TECHNICAL: Dimension.PRODUCT_TECH,
    FindingCategory.GTM: Dimension.GTM_TRACTION,
    FindingCategory.CUSTOMER: Dimension.GTM_TRACTION,
    FindingCategory.COMPETITIVE: Dimension.COMPETITIVE,
    FindingCategory.EXIT: Dimension.EXIT_POTENTIAL,
}


@dataclass(frozen=True)
class AggregationConfig:
    """Aggregation settings (immutable).

    Attributes:
        min_confidence_for_inclusion: Findings scoring below are excluded.
        confidence_weighting: Weight scores by confidence / 100.
        min_findings_per_dimension: Findings required to score a dimension.
    """

    min_confidence_for_inclusion: int = DEFAULT_MIN_CONFIDENCE_FOR_INCLUSION
    confidence_weighting: bool = DEFAULT_CONFIDENCE_WEIGHTING
    min_findings_per_dimension: int = DEFAULT_MIN_FINDINGS_PER_DIMENSION

    def __post_init__(self) -> None:
        if not 0 <= self.min_confidence_for_inclusion <= 100:
            raise ValueError(
                "min_confidence_for_inclusion must be between 0 and 100, "
                f"got {self.min_confidence_for_inclusion}"
            )
        if self.min_findings_per_dimension <= 0:
            raise ValueError(
                "min_findings_per_dimension must be positive, "
                f"got {self.min_findings_per_dimension}"
            )

    @classmethod
    def from_scoring_config(cls, config: ScoringConfig) -> AggregationConfig:
        return cls(
            min_confidence_for_inclusion=config.min_confidence_for_inclusion,
            confidence_weighting=config.confidence_weighting,
            min_findings_per_dimension=config.min_findings_per_dimension,
        )


def expected_variance(findings: Sequence[ScoredFinding]) -> float:
    """Expected score spread between re-runs, from the confidence distribution.

    ``25 x (1 - avg_confidence / 100) x (1 - 0.5 x benchmarked_ratio)``,
    rounded to one decimal. No findings means maximum variance.
    """
    if not findings:
        return MAX_EXPECTED_VARIANCE
    avg_confidence = sum(f.confidence.score for f in findings) / len(findings)
    benchmarked_ratio = sum(1 for f in findings if f.benchmark is not None) / len(findings)
    variance = MAX_EXPECTED_VARIANCE * (1 - avg_confidence / 100) * (1 - 0.5 * benchmarked_ratio)
    return round_half_up(max(0.0, variance), 1)


def _insufficient(factor_name: str, reason: str) -> ConfidenceScore:
    return ConfidenceScore(
        level=ConfidenceLevel.INSUFFICIENT,
        score=0,
        factors=(ConfidenceFactor(name=factor_name, weight=1.0, score=0.0, reason=reason),),
    )


class ScoreAggregator:
    """Aggregates scored findings into dimension and global scores."""

    def __init__(
        self,
        registry: MetricRegistry | None = None,
        confidence: ConfidenceCalculator | None = None,
        config: AggregationConfig | None = None,
    ) -> None:
        self._registry = registry if registry is not None else MetricRegistry()
        self._confidence = confidence if confidence is not None else ConfidenceCalculator()
        self._config = config if config is not None else AggregationConfig()

    @property
    def config(self) -> AggregationConfig:
        return self._config

    def dimension_for(self, finding: ScoredFinding) -> Dimension:
        """Dimension of the finding's metric, else the one mapped from its category."""
        definition = self._registry.get(finding.metric)
        if definition is not None:
            return definition.dimension
        return CATEGORY_DIMENSIONS.get(finding.category, Dimension.PRODUCT_TECH)

    def aggregate_dimension(
        self, findings: Sequence[ScoredFinding], dimension: Dimension, weight: float
    ) -> DimensionScore:
        """Score one dimension from its findings.

        Args:
            findings: Included findings belonging to ``dimension``.
            dimension: Dimension being scored.
            weight: Dimension weight in the global score.

        Returns:
            DimensionScore; ``score`` is None below the minimum finding count.
        """
        minimum = self._config.min_findings_per_dimension
        if len(findings) < minimum:
            return DimensionScore(
                dimension=dimension,
                score=None,
                weight=weight,
                findings=tuple(findings),
                aggregated_confidence=_insufficient(
                    "Data Coverage",
                    f"Only {len(findings)} findings, need at least {minimum}",
                ),
                sufficient_data=False,
            )

        weighted_sum = 0.0
        total_weight = 0.0
        contributions: list[tuple[ScoredFinding, float, float]] = []
        for finding in findings:
            # included findings always carry a normalized value
            score = finding.normalized_value or 0.0
            definition = self._registry.get(finding.metric)
            metric_weight = definition.weight if definition is not None else DEFAULT_METRIC_WEIGHT
            multiplier = (
                finding.confidence.score / 100 if self._config.confidence_weighting else 1.0
            )
            effective = metric_weight * multiplier
            weighted_sum += score * effective
            total_weight += effective
            contributions.append((finding, score, effective))

        if total_weight > 0:
            raw = weighted_sum / total_weight
        else:
            raw = sum(score for _, score, _ in contributions) / len(contributions)

        contributors = tuple(
            DimensionContributor(
                finding_id=finding.id,
                metric=finding.metric,
                contribution=score * effective / 100,
                confidence=finding.confidence.level,
            )
            for finding, score, effective in contributions
        )
        return DimensionScore(
            dimension=dimension,
            score=round_half_up(raw),
            weight=weight,
            findings=tuple(findings),
            aggregated_confidence=self._confidence.combine_confidences(
                f.confidence for f in findings
            ),
            contributors=contributors,
        )

    def calculate_global_score(self, dimensions: Iterable[DimensionScore]) -> AggregationResult:
        """Weighted mean of the scored dimensions.

        Unscored dimensions are left out of the denominator and their
        findings are recorded as excluded.
        """
        dims = list(dimensions)
        included: list[str] = []
        excluded: list[ExcludedFinding] = []
        warnings: list[str] = []

        scorable: list[DimensionScore] = []
        for dim in dims:
            if dim.score is None:
                warnings.append(
                    f"Dimension {dim.dimension.value} has insufficient data "
                    f"({len(dim.findings)} findings)"
                )
                excluded.extend(
                    ExcludedFinding(
                        finding_id=f.id,
                        metric=f.metric,
                        reason=ExclusionReason.INSUFFICIENT_DIMENSION_DATA,
                        detail=f"Dimension {dim.dimension.value} excluded due to insufficient data",
                    )
                    for f in dim.findings
                )
                continue
            included.extend(f.id for f in dim.findings)
            scorable.append(dim)

        if not scorable:
            return AggregationResult(
                score=None,
                confidence=_insufficient(
                    "Dimension Coverage", "No dimensions have sufficient data for scoring"
                ),
                included_findings=tuple(included),
                excluded_findings=tuple(excluded),
                warnings=tuple(warnings),
            )

        weighted_sum = 0.0
        total_weight = 0.0
        for dim in scorable:
            multiplier = (
                dim.aggregated_confidence.score / 100 if self._config.confidence_weighting else 1.0
            )
            effective = dim.weight * multiplier
            weighted_sum += (dim.score or 0.0) * effective
            total_weight += effective

        if total_weight <= 0:
            # all confidences zero: fall back to plain dimension weights
            total_weight = sum(d.weight for d in scorable)
            weighted_sum = sum((d.score or 0.0) * d.weight for d in scorable)

        score = round_half_up(weighted_sum / total_weight) if total_weight > 0 else None

        missing = [d.dimension.value for d in dims if d.score is None]
        if missing:
            warnings.append(f"Missing data for dimensions: {', '.join(missing)}")

        return AggregationResult(
            score=score,
            confidence=self._confidence.combine_confidences(d.aggregated_confidence for d in dims),
            included_findings=tuple(included),
            excluded_findings=tuple(excluded),
            warnings=tuple(warnings),
        )

    def aggregate_findings(
        self,
        findings: Sequence[ScoredFinding],
        *,
        deal_id: str,
        analysis_id: str,
        weights: DimensionWeights | None = None,
        stage: Stage | None = None,
        sector: str | None = None,
        benchmark_cache_stale: bool = False,
        warnings: Iterable[str] = (),
    ) -> ObjectiveDealScore:
        """Aggregate scored findings into a complete deal score.

        Args:
            findings: All scored findings of the deal.
            deal_id: Deal identifier.
            analysis_id: Analysis run identifier.
            weights: Dimension weights; derived from stage/sector when omitted.
            stage: Deal stage, recorded in metadata.
            sector: Deal sector, recorded in metadata.
            benchmark_cache_stale: Benchmarks came from a stale cache.
            warnings: Upstream warnings to carry into metadata.

        Returns:
            ObjectiveDealScore with one DimensionScore per dimension.
        """
        if weights is None:
            weights = get_weights_for_deal(stage, sector)

        excluded: list[ExcludedFinding] = []
        included: list[ScoredFinding] = []
        floor = self._config.min_confidence_for_inclusion
        for finding in findings:
            if finding.normalized_value is None:
                excluded.append(
                    ExcludedFinding(
                        finding_id=finding.id,
                        metric=finding.metric,
                        reason=ExclusionReason.MISSING_VALUE,
                        detail="No usable numeric value",
                    )
                )
            elif finding.confidence.score < floor:
                excluded.append(
                    ExcludedFinding(
                        finding_id=finding.id,
                        metric=finding.metric,
                        reason=ExclusionReason.LOW_CONFIDENCE,
                        detail=f"Confidence {finding.confidence.score}% below threshold {floor}%",
                    )
                )
            else:
                included.append(finding)

        # Scored without a benchmark comparison: contributes, but is listed
        excluded.extend(
            ExcludedFinding(
                finding_id=f.id,
                metric=f.metric,
                reason=ExclusionReason.NO_BENCHMARK,
                detail="Scored without benchmark comparison",
            )
            for f in included
            if f.benchmark is None
        )

        grouped: dict[Dimension, list[ScoredFinding]] = {d: [] for d in Dimension}
        for finding in included:
            grouped[self.dimension_for(finding)].append(finding)

        dimensions = {
            dimension: self.aggregate_dimension(grouped[dimension], dimension, weights[dimension])
            for dimension in Dimension
        }
        result = self.calculate_global_score(dimensions.values())

        all_warnings = [*warnings, *result.warnings]
        if benchmark_cache_stale:
            all_warnings.append("Benchmark cache is stale; last good benchmarks were used")

        if excluded:
            logger.info(
                "Deal %s: %d of %d findings excluded or flagged",
                deal_id, len(excluded), len(findings),
            )

        metadata = ScoreMetadata(
            total_findings=len(findings),
            high_confidence_findings=sum(
                1 for f in included if f.confidence.level == ConfidenceLevel.HIGH
            ),
            benchmarks_used=sum(1 for f in included if f.benchmark is not None),
            expected_variance=expected_variance(included),
            excluded_findings=(*excluded, *result.excluded_findings),
            warnings=tuple(all_warnings),
            fallbacks_used={f.id: f.fallback_used for f in findings if f.fallback_used},
            benchmark_cache_stale=benchmark_cache_stale,
            stage=stage,
            sector=sector,
            weights=weights,
            analysis_timestamp=datetime.now(UTC),
        )
        return ObjectiveDealScore(
            deal_id=deal_id,
            analysis_id=analysis_id,
            global_score=result.score,
            global_confidence=result.confidence,
            dimensions=dimensions,
            findings=tuple(findings),
            metadata=metadata,
        )
