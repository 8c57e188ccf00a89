"""Criterion scoring over scored findings.

A criterion groups a few metrics under a weight. Its score is the mean of
its findings' normalized values weighted by confidence / 100. Criteria with
no data are reported but left out of the overall denominator. The overall
score maps to a letter grade.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Final

from pydantic import BaseModel, ConfigDict, Field

from dealscore.scoring.aggregator import expected_variance
from dealscore.scoring.metric_registry import normalize_metric_name
from dealscore.scoring.models import ScoredFinding
from dealscore.scoring.numeric import clamp, round_half_up

NO_DATA_SCORE: Final[float] = 50.0

GRADE_THRESHOLDS: Final[tuple[tuple[float, str], ...]] = (
    (80.0, "A"),
    (65.0, "B"),
    (50.0, "C"),
    (35.0, "D"),
)


class ScoringCriterion(BaseModel):
    """Named, weighted group of metrics."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    weight: float = Field(..., gt=0.0)
    metrics: tuple[str, ...] = Field(..., min_length=1)


class CriterionScore(BaseModel):
    """Score of one criterion; ``score`` is None when no finding matched."""

    model_config = ConfigDict(frozen=True)

    criterion: str
    weight: float
    score: float | None = Field(default=None, ge=0.0, le=100.0)
    justification: str


class CriteriaScoreResult(BaseModel):
    """Overall criterion-based score."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=0.0, le=100.0)
    grade: str
    breakdown: tuple[CriterionScore, ...]
    confidence: int = Field(..., ge=0, le=100)
    expected_variance: float = Field(..., ge=0.0)


def score_to_grade(score: float) -> str:
    """A >= 80, B >= 65, C >= 50, D >= 35, otherwise F."""
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def _criteria(table: dict[str, tuple[float, tuple[str, ...]]]) -> tuple[ScoringCriterion, ...]:
    return tuple(
        ScoringCriterion(name=name, weight=weight, metrics=metrics)
        for name, (weight, metrics) in table.items()
    )


FINANCIAL_CRITERIA: Final[tuple[ScoringCriterion, ...]] = _criteria(
    {
        "Data Transparency": (25, ("arr", "gross_margin")),
        "Metrics Health": (25, ("arr_growth", "nrr", "burn_multiple")),
        "Valuation Rationality": (20, ("valuation_multiple",)),
        "Unit Economics Viability": (15, ("ltv_cac_ratio", "cac_payback")),
        "Burn Efficiency": (15, ("burn_multiple", "runway")),
    }
)

TEAM_CRITERIA: Final[tuple[ScoringCriterion, ...]] = _criteria(
    {
        "Domain Expertise": (25, ("founder_domain_expertise",)),
        "Entrepreneurial Track": (25, ("founder_entrepreneurial_exp",)),
        "Execution Capability": (20, ("key_hires_filled", "team_size")),
        "Network & Ecosystem": (15, ("network_strength",)),
        "Team Cohesion": (15, ("team_complementarity",)),
    }
)

COMPETITIVE_CRITERIA: Final[tuple[ScoringCriterion, ...]] = _criteria(
    {
        "Competitive Position": (30, ("technical_moat", "differentiation_score")),
        "Market Structure": (20, ("market_concentration",)),
        "Threat Level": (25, ("competitive_density",)),
        "Competitive Window": (25, ("competitive_window",)),
    }
)

EXIT_CRITERIA: Final[tuple[ScoringCriterion, ...]] = _criteria(
    {
        "Exit Viability": (30, ("exit_viability_score",)),
        "Return Potential": (45, ("expected_exit_multiple",)),
        "Comparable Quality": (25, ("comparable_exits_count",)),
    }
)


def _score_criterion(
    criterion: ScoringCriterion, findings: Sequence[ScoredFinding]
) -> CriterionScore:
    wanted = {normalize_metric_name(m) for m in criterion.metrics}
    relevant = [f for f in findings if f.metric in wanted and f.normalized_value is not None]
    if not relevant:
        return CriterionScore(
            criterion=criterion.name,
            weight=criterion.weight,
            justification="No data available for this criterion",
        )

    total_weight = sum(f.confidence.score / 100 for f in relevant)
    if total_weight > 0:
        raw = (
            sum((f.normalized_value or 0.0) * f.confidence.score / 100 for f in relevant)
            / total_weight
        )
    else:
        raw = 0.0

    justification = " | ".join(
        f"{f.metric}: {f.value} (P{f.percentile if f.percentile is not None else 'N/A'}, "
        f"conf: {f.confidence.score}%)"
        for f in relevant
    )
    return CriterionScore(
        criterion=criterion.name,
        weight=criterion.weight,
        score=clamp(round_half_up(raw)),
        justification=justification,
    )


def score_criteria(
    findings: Iterable[ScoredFinding], criteria: Sequence[ScoringCriterion]
) -> CriteriaScoreResult:
    """Score findings against a set of criteria.

    Args:
        findings: Scored findings (registry metric names).
        criteria: Criteria to evaluate.

    Returns:
        CriteriaScoreResult; 50 and grade C when no criterion has data.
    """
    items = list(findings)
    breakdown = tuple(_score_criterion(c, items) for c in criteria)

    scored = [b for b in breakdown if b.score is not None]
    total_weight = sum(b.weight for b in scored)
    if total_weight > 0:
        raw = sum((b.score or 0.0) * b.weight for b in scored) / total_weight
    else:
        raw = NO_DATA_SCORE
    score = clamp(round_half_up(raw))

    usable = [f for f in items if f.normalized_value is not None]
    confidence = (
        round_half_up(sum(f.confidence.score for f in usable) / len(usable)) if usable else 0.0
    )
    return CriteriaScoreResult(
        score=score,
        grade=score_to_grade(score),
        breakdown=breakdown,
        confidence=int(confidence),
        expected_variance=expected_variance(usable),
    )
