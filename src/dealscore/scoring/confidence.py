"""Multi-factor confidence scoring for findings.

Five factors with default weights:
- data_availability 0.30
- evidence_quality 0.25
- benchmark_match 0.20
- source_reliability 0.15
- temporal_relevance 0.10

A score is the weighted average over the factors actually supplied: the
denominator is the sum of the present factors' weights, so an absent factor
neither contributes nor dilutes. Factors are passed as an explicit list of
FactorInput records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from enum import StrEnum
from typing import Final, NamedTuple

from dealscore.scoring.models import (
    ConfidenceContext,
    ConfidenceFactor,
    ConfidenceScore,
    FindingDraft,
)
from dealscore.scoring.numeric import clamp, round_half_up

logger = logging.getLogger(__name__)

VERIFIED_BOOST: Final[float] = 1.1


class FactorKind(StrEnum):
    """Confidence factor identifiers."""

    DATA_AVAILABILITY = "data_availability"
    EVIDENCE_QUALITY = "evidence_quality"
    BENCHMARK_MATCH = "benchmark_match"
    SOURCE_RELIABILITY = "source_reliability"
    TEMPORAL_RELEVANCE = "temporal_relevance"


FACTOR_DISPLAY_NAMES: Final[dict[FactorKind, str]] = {
    FactorKind.DATA_AVAILABILITY: "Data Availability",
    FactorKind.EVIDENCE_QUALITY: "Evidence Quality",
    FactorKind.BENCHMARK_MATCH: "Benchmark Match",
    FactorKind.SOURCE_RELIABILITY: "Source Reliability",
    FactorKind.TEMPORAL_RELEVANCE: "Temporal Relevance",
}

DEFAULT_WEIGHTS: Final[dict[FactorKind, float]] = {
    FactorKind.DATA_AVAILABILITY: 0.30,
    FactorKind.EVIDENCE_QUALITY: 0.25,
    FactorKind.BENCHMARK_MATCH: 0.20,
    FactorKind.SOURCE_RELIABILITY: 0.15,
    FactorKind.TEMPORAL_RELEVANCE: 0.10,
}

# (threshold, reason), first threshold the score reaches wins
_REASONS: Final[dict[FactorKind, tuple[tuple[float, str], ...]]] = {
    FactorKind.DATA_AVAILABILITY: (
        (80, "All required data points available"),
        (60, "Most data points available, some gaps"),
        (40, "Partial data available"),
        (20, "Limited data available"),
        (0, "Insufficient data"),
    ),
    FactorKind.EVIDENCE_QUALITY: (
        (80, "Strong, verified evidence from multiple sources"),
        (60, "Good evidence with some verification"),
        (40, "Moderate evidence quality"),
        (20, "Weak or unverified evidence"),
        (0, "No reliable evidence"),
    ),
    FactorKind.BENCHMARK_MATCH: (
        (80, "Exact sector/stage benchmark match"),
        (60, "Close benchmark match with minor extrapolation"),
        (40, "Approximate benchmark from related sector"),
        (20, "Generic benchmark used"),
        (0, "No applicable benchmark"),
    ),
    FactorKind.SOURCE_RELIABILITY: (
        (80, "Multiple independent, reliable sources"),
        (60, "Two reliable sources"),
        (40, "Single verified source"),
        (20, "Unverified source"),
        (0, "No credible source"),
    ),
    FactorKind.TEMPORAL_RELEVANCE: (
        (80, "Data is current (< 90 days old)"),
        (60, "Data is recent (< 6 months old)"),
        (40, "Data is somewhat dated (< 1 year old)"),
        (20, "Data is outdated (> 1 year old)"),
        (0, "Data age unknown or very old"),
    ),
}


class FactorInput(NamedTuple):
    """One supplied factor: its kind, weight and raw 0-100 score."""

    kind: FactorKind
    weight: float
    score: float


def factor_reason(kind: FactorKind, score: float) -> str:
    for threshold, reason in _REASONS[kind]:
        if score >= threshold:
            return reason
    return _REASONS[kind][-1][1]


def _source_reliability(source_count: int) -> float:
    if source_count >= 3:
        return 100.0
    if source_count == 2:
        return 70.0
    if source_count == 1:
        return 50.0
    return 20.0


def _temporal_relevance(data_age_days: float | None) -> float:
    if data_age_days is None:
        return 50.0
    if data_age_days <= 30:
        return 100.0
    if data_age_days <= 90:
        return 80.0
    if data_age_days <= 180:
        return 60.0
    if data_age_days <= 365:
        return 40.0
    return 20.0


class ConfidenceCalculator:
    """Computes, derives and combines ConfidenceScores."""

    def __init__(self, weights: Mapping[FactorKind, float] | None = None) -> None:
        """Initialize the calculator.

        Args:
            weights: Per-factor weight overrides; unspecified factors keep
                their default weight.

        Raises:
            ValueError: If an override weight is outside [0, 1].
        """
        merged = dict(DEFAULT_WEIGHTS)
        for kind, weight in (weights or {}).items():
            if not 0.0 <= weight <= 1.0:
                raise ValueError(f"Confidence weight for {kind} must be in [0, 1], got {weight}")
            merged[FactorKind(kind)] = weight
        self._weights = merged

    @property
    def weights(self) -> dict[FactorKind, float]:
        return dict(self._weights)

    def calculate_weighted(self, inputs: Sequence[FactorInput]) -> ConfidenceScore:
        """Weighted average over exactly the supplied factors.

        Args:
            inputs: Factors actually present, each with its weight.

        Returns:
            ConfidenceScore; no inputs (or zero total weight) yields 0.
        """
        factors: list[ConfidenceFactor] = []
        total_weight = 0.0
        weighted_sum = 0.0

        for kind, weight, raw_score in inputs:
            score = clamp(raw_score)
            factors.append(
                ConfidenceFactor(
                    name=FACTOR_DISPLAY_NAMES[kind],
                    weight=weight,
                    score=score,
                    reason=factor_reason(kind, score),
                )
            )
            total_weight += weight
            weighted_sum += score * weight

        final = weighted_sum / total_weight if total_weight > 0 else 0.0
        return ConfidenceScore.from_score(int(round_half_up(clamp(final))), tuple(factors))

    def calculate(self, factors: Mapping[FactorKind | str, float]) -> ConfidenceScore:
        """Score the supplied factors with the calculator's weights.

        Args:
            factors: Factor kind (or its string value) to raw 0-100 score.
                Only the factors present contribute.

        Returns:
            ConfidenceScore.
        """
        supplied = {FactorKind(key): score for key, score in factors.items()}
        return self.calculate_weighted(
            [
                FactorInput(kind, self._weights[kind], supplied[kind])
                for kind in FactorKind
                if kind in supplied
            ]
        )

    def calculate_for_finding(
        self, finding: FindingDraft, context: ConfidenceContext
    ) -> ConfidenceScore:
        """Derive all five factors for a finding from its context.

        - data availability: 100 with a value, else 0
        - evidence quality: mean evidence confidence x 100, else 50 with
          direct evidence in context, else 20
        - benchmark match: 100 with a benchmark attached, 70 if the context
          reports a match, else 30
        - source reliability: >=3 sources 100, 2 -> 70, 1 -> 50, 0 -> 20
        - temporal relevance: by data age, 50 when unknown

        Verified data multiplies every factor by 1.1, capped at 100.
        """
        scores: dict[FactorKind, float] = {}

        scores[FactorKind.DATA_AVAILABILITY] = 100.0 if finding.value is not None else 0.0

        if finding.evidence:
            mean = sum(e.confidence for e in finding.evidence) / len(finding.evidence)
            scores[FactorKind.EVIDENCE_QUALITY] = mean * 100.0
        else:
            scores[FactorKind.EVIDENCE_QUALITY] = 50.0 if context.has_direct_evidence else 20.0

        if finding.benchmark is not None:
            scores[FactorKind.BENCHMARK_MATCH] = 100.0
        elif context.has_benchmark_match:
            scores[FactorKind.BENCHMARK_MATCH] = 70.0
        else:
            scores[FactorKind.BENCHMARK_MATCH] = 30.0

        scores[FactorKind.SOURCE_RELIABILITY] = _source_reliability(context.source_count)
        scores[FactorKind.TEMPORAL_RELEVANCE] = _temporal_relevance(context.data_age_days)

        if context.is_verified:
            scores = {k: min(100.0, v * VERIFIED_BOOST) for k, v in scores.items()}

        return self.calculate_weighted(
            [FactorInput(kind, self._weights[kind], score) for kind, score in scores.items()]
        )

    def combine_confidences(self, confidences: Iterable[ConfidenceScore]) -> ConfidenceScore:
        """Combine several scores, weighting each by its own score / 100.

        Same-named factors are averaged (score and weight) and relabeled
        "Aggregated from N sources". A single input is returned unchanged.

        Args:
            confidences: Scores to combine.

        Returns:
            Combined ConfidenceScore; an empty input yields insufficient / 0.
        """
        items = list(confidences)
        if not items:
            return ConfidenceScore.from_score(0)
        if len(items) == 1:
            return items[0]

        weighted_sum = 0.0
        total_weight = 0.0
        for conf in items:
            weight = conf.score / 100.0
            weighted_sum += conf.score * weight
            total_weight += weight
        combined = weighted_sum / total_weight if total_weight > 0 else 0.0

        grouped: dict[str, list[ConfidenceFactor]] = {}
        for conf in items:
            for factor in conf.factors:
                grouped.setdefault(factor.name, []).append(factor)

        factors = tuple(
            ConfidenceFactor(
                name=name,
                weight=sum(f.weight for f in group) / len(group),
                score=round_half_up(sum(f.score for f in group) / len(group)),
                reason=f"Aggregated from {len(group)} sources",
            )
            for name, group in grouped.items()
        )
        return ConfidenceScore.from_score(int(round_half_up(combined)), factors)
