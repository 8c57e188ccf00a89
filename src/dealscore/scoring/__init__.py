"""Benchmark-anchored, confidence-weighted scoring engine.

Components, leaves first:
- metric_registry: metric catalogue and raw-value normalizer
- benchmark_cache / benchmark_service: benchmark lookup cascade, percentiles
- confidence: multi-factor confidence scores
- stage_weights / aggregator: dimension weights and score aggregation
- engine: observation -> finding -> deal score pipeline
"""

from dealscore.scoring.aggregator import AggregationConfig, ScoreAggregator, expected_variance
from dealscore.scoring.benchmark_cache import (
    BenchmarkCache,
    BenchmarkCacheStatus,
    BenchmarkRepository,
    InMemoryBenchmarkRepository,
)
from dealscore.scoring.benchmark_service import BenchmarkService, MetricAssessment
from dealscore.scoring.confidence import (
    DEFAULT_WEIGHTS,
    ConfidenceCalculator,
    FactorInput,
    FactorKind,
)
from dealscore.scoring.criteria import (
    CriteriaScoreResult,
    CriterionScore,
    ScoringCriterion,
    score_criteria,
    score_to_grade,
)
from dealscore.scoring.engine import DealScoringEngine
from dealscore.scoring.metric_registry import (
    DuplicateMetricError,
    MetricRegistry,
    normalize_metric_name,
)
from dealscore.scoring.models import (
    BenchmarkEntry,
    BenchmarkLookupResult,
    ConfidenceLevel,
    ConfidenceScore,
    Dimension,
    DimensionScore,
    DimensionWeights,
    MetricDefinition,
    MetricObservation,
    ObjectiveDealScore,
    PercentileAssessment,
    PercentileResult,
    ScoredFinding,
    Stage,
    score_to_level,
)
from dealscore.scoring.percentile import calculate_percentile
from dealscore.scoring.stage_weights import get_weights_for_deal

__all__ = [
    "DEFAULT_WEIGHTS",
    "AggregationConfig",
    "BenchmarkCache",
    "BenchmarkCacheStatus",
    "BenchmarkEntry",
    "BenchmarkLookupResult",
    "BenchmarkRepository",
    "BenchmarkService",
    "ConfidenceCalculator",
    "ConfidenceLevel",
    "ConfidenceScore",
    "CriteriaScoreResult",
    "CriterionScore",
    "DealScoringEngine",
    "Dimension",
    "DimensionScore",
    "DimensionWeights",
    "DuplicateMetricError",
    "FactorInput",
    "FactorKind",
    "InMemoryBenchmarkRepository",
    "MetricAssessment",
    "MetricDefinition",
    "MetricObservation",
    "MetricRegistry",
    "ObjectiveDealScore",
    "PercentileAssessment",
    "PercentileResult",
    "ScoreAggregator",
    "ScoredFinding",
    "ScoringCriterion",
    "Stage",
    "calculate_percentile",
    "expected_variance",
    "get_weights_for_deal",
    "normalize_metric_name",
    "score_criteria",
    "score_to_grade",
    "score_to_level",
]
