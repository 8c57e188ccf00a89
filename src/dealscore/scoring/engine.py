"""Deal scoring pipeline.

For each observation:
normalize the metric name -> validate bounds -> benchmark lookup ->
percentile -> 0-100 score -> data-reliability penalty -> confidence ->
ScoredFinding. The findings are then aggregated with the stage/sector
dimension weights into an ObjectiveDealScore.

Scoring is deterministic for a fixed benchmark snapshot. Bad or missing data
never raises; every degradation is flagged on the finding and logged.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Final

from dealscore.config import ScoringConfig, load_scoring_config
from dealscore.scoring.aggregator import AggregationConfig, ScoreAggregator
from dealscore.scoring.benchmark_cache import BenchmarkCache, BenchmarkRepository
from dealscore.scoring.benchmark_service import BenchmarkService
from dealscore.scoring.confidence import ConfidenceCalculator
from dealscore.scoring.metric_registry import MetricRegistry, normalize_metric_name
from dealscore.scoring.models import (
    ConfidenceContext,
    DataReliability,
    Evidence,
    EvidenceType,
    FindingDraft,
    FindingFlag,
    MetricObservation,
    ObjectiveDealScore,
    PercentileResult,
    ScoredFinding,
)
from dealscore.scoring.normalization import coerce_stage
from dealscore.scoring.numeric import clamp, round_half_up
from dealscore.scoring.stage_weights import get_weights_for_deal

logger = logging.getLogger(__name__)

RELIABILITY_PENALTIES: Final[dict[DataReliability, float]] = {
    DataReliability.PROJECTED: 0.7,
    DataReliability.ESTIMATED: 0.8,
    DataReliability.UNVERIFIABLE: 0.5,
}

BENCHMARK_EVIDENCE_CONFIDENCE: Final[float] = 0.9

_DIRECT_EVIDENCE_RELIABILITY: Final[frozenset[DataReliability]] = frozenset(
    {DataReliability.AUDITED, DataReliability.VERIFIED}
)
_UNVERIFIED_RELIABILITY: Final[frozenset[DataReliability]] = frozenset(
    {DataReliability.ESTIMATED, DataReliability.UNVERIFIABLE}
)


def _to_number(value: float | str | None) -> float | None:
    """Numeric form of an observed value, or None when it has none."""
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").rstrip("%").strip()
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        number = float(value)
    return number if math.isfinite(number) else None


def _confidence_context(
    observation: MetricObservation, has_benchmark_match: bool
) -> ConfidenceContext:
    reliability = observation.data_reliability

    source_count = observation.source_count
    if source_count == 0 and reliability is not None:
        source_count = 2 if reliability == DataReliability.VERIFIED else 1

    if observation.is_verified is not None:
        is_verified = observation.is_verified
    else:
        is_verified = reliability is not None and reliability not in _UNVERIFIED_RELIABILITY

    return ConfidenceContext(
        has_direct_evidence=bool(observation.evidence)
        or reliability in _DIRECT_EVIDENCE_RELIABILITY,
        has_benchmark_match=has_benchmark_match,
        source_count=source_count,
        data_age_days=observation.data_age_days,
        is_verified=is_verified,
    )


class DealScoringEngine:
    """Scores observations and whole deals.

    Components are injected; defaults build a registry, confidence
    calculator and aggregator from the scoring config.
    """

    def __init__(
        self,
        benchmarks: BenchmarkService,
        *,
        registry: MetricRegistry | None = None,
        confidence: ConfidenceCalculator | None = None,
        aggregator: ScoreAggregator | None = None,
        config: ScoringConfig | None = None,
    ) -> None:
        self._config = config if config is not None else ScoringConfig()
        self._benchmarks = benchmarks
        self._registry = registry if registry is not None else MetricRegistry()
        self._confidence = confidence if confidence is not None else ConfidenceCalculator()
        self._aggregator = (
            aggregator
            if aggregator is not None
            else ScoreAggregator(
                registry=self._registry,
                confidence=self._confidence,
                config=AggregationConfig.from_scoring_config(self._config),
            )
        )

    @classmethod
    def from_repository(
        cls, repository: BenchmarkRepository, config: ScoringConfig | None = None
    ) -> DealScoringEngine:
        """Build an engine over a benchmark repository, loading config from env if omitted."""
        config = config if config is not None else load_scoring_config()
        cache = BenchmarkCache.from_config(repository, config)
        return cls(BenchmarkService(cache), config=config)

    @property
    def registry(self) -> MetricRegistry:
        return self._registry

    @property
    def benchmarks(self) -> BenchmarkService:
        return self._benchmarks

    def score_observation(
        self, observation: MetricObservation, *, sector: str, stage: str
    ) -> ScoredFinding:
        """Turn one raw observation into a ScoredFinding.

        Args:
            observation: Observation from an upstream producer.
            sector: Deal sector.
            stage: Deal stage.

        Returns:
            ScoredFinding; ``normalized_value`` is None when the observation
            carries no usable numeric value.
        """
        name = normalize_metric_name(observation.metric)
        definition = self._registry.get(name)
        flags: list[FindingFlag] = []

        if definition is None:
            flags.append(FindingFlag.UNKNOWN_METRIC)
            logger.warning("Unknown metric %r (from %r)", name, observation.metric)

        number = _to_number(observation.value)
        if observation.value is None:
            flags.append(FindingFlag.MISSING_VALUE)
        elif number is None:
            flags.append(FindingFlag.NON_NUMERIC_VALUE)
            logger.warning("Metric %s has non-numeric value %r", name, observation.value)

        lookup_name = definition.benchmark_metric_name if definition is not None else name
        lookup = self._benchmarks.lookup(sector, stage, lookup_name)
        benchmark = lookup.benchmark if lookup.found else None
        if benchmark is None:
            flags.append(FindingFlag.NO_BENCHMARK)
            logger.info("No benchmark for %s (%s/%s)", name, sector, stage)
        elif lookup.stale:
            flags.append(FindingFlag.STALE_BENCHMARK)

        percentile: PercentileResult | None = None
        normalized: float | None = None
        if number is not None:
            if not self._registry.validate_value(name, number):
                flags.append(FindingFlag.OUT_OF_BOUNDS)
                logger.warning("Metric %s value %s outside declared bounds", name, number)
            if benchmark is not None:
                percentile = self._benchmarks.calculate_percentile(number, benchmark)
            score = self._registry.score_value(
                name, number, percentile.percentile if percentile is not None else None
            )
            penalty = RELIABILITY_PENALTIES.get(observation.data_reliability, 1.0)
            normalized = round_half_up(clamp(score * penalty), 1)

        draft = FindingDraft(
            value=observation.value, evidence=observation.evidence, benchmark=benchmark
        )
        confidence = self._confidence.calculate_for_finding(
            draft, _confidence_context(observation, has_benchmark_match=lookup.found)
        )

        evidence = list(observation.evidence)
        if benchmark is not None:
            evidence.append(
                Evidence(
                    type=EvidenceType.BENCHMARK,
                    content=(
                        f"P25={benchmark.p25:g} Median={benchmark.median:g} P75={benchmark.p75:g}"
                    ),
                    source=benchmark.source,
                    confidence=BENCHMARK_EVIDENCE_CONFIDENCE,
                )
            )

        return ScoredFinding(
            id=f"{observation.source}-{name}-{uuid.uuid4().hex[:12]}",
            source=observation.source,
            metric=name,
            category=observation.category,
            value=observation.value,
            unit=observation.unit or (definition.unit if definition is not None else ""),
            normalized_value=normalized,
            percentile=percentile.percentile if percentile is not None else None,
            assessment=percentile.assessment if percentile is not None else None,
            benchmark=benchmark,
            fallback_used=lookup.fallback_used,
            confidence=confidence,
            evidence=tuple(evidence),
            flags=tuple(flags),
            created_at=datetime.now(UTC),
        )

    def score_deal(
        self,
        observations: Iterable[MetricObservation],
        *,
        deal_id: str,
        sector: str,
        stage: str,
        analysis_id: str | None = None,
    ) -> ObjectiveDealScore:
        """Score every observation of a deal and aggregate the findings.

        Args:
            observations: Raw observations for the deal.
            deal_id: Deal identifier.
            sector: Declared deal sector.
            stage: Declared deal stage.
            analysis_id: Analysis run identifier; generated when omitted.

        Returns:
            ObjectiveDealScore.
        """
        analysis_id = analysis_id or str(uuid.uuid4())
        findings = [self.score_observation(o, sector=sector, stage=stage) for o in observations]

        warnings = [
            f"Metric {f.metric} is not registered; neutral score used"
            for f in findings
            if FindingFlag.UNKNOWN_METRIC in f.flags
        ]
        cache = self._benchmarks.cache
        stale = cache.is_stale or any(FindingFlag.STALE_BENCHMARK in f.flags for f in findings)
        last_error = cache.status().last_error
        if stale and last_error:
            warnings.append(f"Benchmark repository unavailable: {last_error}")

        logger.info(
            "Scoring deal %s (%s/%s): %d observations", deal_id, sector, stage, len(findings)
        )
        return self._aggregator.aggregate_findings(
            findings,
            deal_id=deal_id,
            analysis_id=analysis_id,
            weights=get_weights_for_deal(stage, sector),
            stage=coerce_stage(stage),
            sector=sector,
            benchmark_cache_stale=stale,
            warnings=warnings,
        )
