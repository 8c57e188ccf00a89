"""Metric registry and value normalizer.

Catalogue of metric definitions with validation bounds, in-dimension weights
and benchmark lookup keys. Converts a raw value, or a benchmark percentile,
into a 0-100 score according to the metric's direction.

Unknown metrics never raise: they score a neutral 50 and are logged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Final

from dealscore.scoring.models import (
    CalculationType,
    Dimension,
    FindingCategory,
    MetricDefinition,
    MetricDirection,
    TargetRange,
)
from dealscore.scoring.numeric import clamp

logger = logging.getLogger(__name__)

NEUTRAL_SCORE: Final[float] = 50.0
_TARGET_RANGE_OUTSIDE_CEILING: Final[float] = 80.0
_TARGET_RANGE_INSIDE_SPREAD: Final[float] = 20.0
_PERCENTILE_TARGET_FALLOFF: Final[float] = 2.0


class DuplicateMetricError(Exception):
    """Raised when registering a metric name that is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Metric already registered: {name}")


def _metric(
    name: str,
    display_name: str,
    category: FindingCategory,
    dimension: Dimension,
    weight: float,
    direction: MetricDirection,
    unit: str,
    benchmark_metric_name: str,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
    target_range: tuple[float, float] | None = None,
    calculation_type: CalculationType = CalculationType.DIRECT,
    formula: str | None = None,
    dependencies: tuple[str, ...] = (),
) -> MetricDefinition:
    return MetricDefinition(
        name=name,
        display_name=display_name,
        category=category,
        dimension=dimension,
        weight=weight,
        direction=direction,
        target_range=(
            TargetRange(min=target_range[0], max=target_range[1]) if target_range else None
        ),
        min_value=min_value,
        max_value=max_value,
        unit=unit,
        benchmark_metric_name=benchmark_metric_name,
        calculation_type=calculation_type,
        formula=formula,
        dependencies=dependencies,
    )


_FIN = FindingCategory.FINANCIAL
_HIGHER = MetricDirection.HIGHER_BETTER
_LOWER = MetricDirection.LOWER_BETTER
_TARGET = MetricDirection.TARGET_RANGE
_DERIVED = CalculationType.DERIVED
_COMPOSITE = CalculationType.COMPOSITE

BUILT_IN_METRICS: Final[tuple[MetricDefinition, ...]] = (
    # Financials
    _metric("arr", "Annual Recurring Revenue", _FIN, Dimension.FINANCIALS, 0.15, _HIGHER,
            "EUR", "ARR", min_value=0),
    _metric("arr_growth", "ARR Growth (YoY)", _FIN, Dimension.FINANCIALS, 0.20, _HIGHER,
            "%", "ARR Growth YoY", min_value=-100, max_value=1000),
    _metric("gross_margin", "Gross Margin", _FIN, Dimension.FINANCIALS, 0.10, _HIGHER,
            "%", "Gross Margin", min_value=0, max_value=100),
    _metric("burn_multiple", "Burn Multiple", _FIN, Dimension.FINANCIALS, 0.15, _LOWER,
            "x", "Burn Multiple", min_value=0, calculation_type=_DERIVED,
            formula="net_burn / net_new_arr"),
    _metric("runway", "Runway", _FIN, Dimension.FINANCIALS, 0.10, _HIGHER,
            "months", "Runway", min_value=0, calculation_type=_DERIVED,
            formula="cash / monthly_burn"),
    _metric("cac_payback", "CAC Payback", _FIN, Dimension.FINANCIALS, 0.10, _LOWER,
            "months", "CAC Payback", min_value=0, max_value=60, calculation_type=_DERIVED,
            formula="cac / (arpu * gross_margin)"),
    _metric("ltv_cac_ratio", "LTV/CAC Ratio", _FIN, Dimension.FINANCIALS, 0.10, _HIGHER,
            "x", "LTV/CAC Ratio", min_value=0, max_value=20, calculation_type=_DERIVED,
            formula="ltv / cac", dependencies=("ltv", "cac")),
    _metric("valuation_multiple", "Valuation Multiple (ARR)", _FIN, Dimension.FINANCIALS,
            0.10, _TARGET, "x", "Valuation Multiple", min_value=0, target_range=(5, 20),
            calculation_type=_DERIVED, formula="pre_money_valuation / arr"),
    # Team
    _metric("founder_domain_expertise", "Founder Domain Expertise", FindingCategory.TEAM,
            Dimension.TEAM, 0.25, _HIGHER, "score", "Founder Expertise Score",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
    _metric("founder_entrepreneurial_exp", "Founder Entrepreneurial Experience",
            FindingCategory.TEAM, Dimension.TEAM, 0.20, _HIGHER, "score",
            "Entrepreneurial Experience Score", min_value=0, max_value=100,
            calculation_type=_COMPOSITE),
    _metric("team_complementarity", "Team Complementarity", FindingCategory.TEAM,
            Dimension.TEAM, 0.20, _HIGHER, "score", "Team Complementarity Score",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
    _metric("team_size", "Team Size", FindingCategory.TEAM, Dimension.TEAM, 0.10, _TARGET,
            "people", "Team Size", min_value=1, target_range=(3, 15)),
    _metric("key_hires_filled", "Key Hires Filled", FindingCategory.TEAM, Dimension.TEAM,
            0.15, _HIGHER, "%", "Key Hires %", min_value=0, max_value=100,
            calculation_type=_COMPOSITE),
    _metric("network_strength", "Network Strength", FindingCategory.TEAM, Dimension.TEAM,
            0.10, _HIGHER, "score", "Network Score", min_value=0, max_value=100,
            calculation_type=_COMPOSITE),
    # Market
    _metric("tam", "Total Addressable Market", FindingCategory.MARKET, Dimension.MARKET,
            0.15, _HIGHER, "EUR", "TAM", min_value=0),
    _metric("sam", "Serviceable Addressable Market", FindingCategory.MARKET,
            Dimension.MARKET, 0.15, _HIGHER, "EUR", "SAM", min_value=0),
    _metric("market_growth_rate", "Market Growth Rate (CAGR)", FindingCategory.MARKET,
            Dimension.MARKET, 0.20, _HIGHER, "%", "Market CAGR", min_value=-50, max_value=200),
    _metric("market_timing", "Market Timing Score", FindingCategory.MARKET, Dimension.MARKET,
            0.20, _HIGHER, "score", "Timing Score", min_value=0, max_value=100,
            calculation_type=_COMPOSITE),
    _metric("adoption_curve_position", "Adoption Curve Position", FindingCategory.MARKET,
            Dimension.MARKET, 0.15, _TARGET, "%", "Adoption Position", min_value=0,
            max_value=100, target_range=(20, 50), calculation_type=_COMPOSITE),
    _metric("regulatory_tailwind", "Regulatory Tailwind", FindingCategory.LEGAL,
            Dimension.MARKET, 0.15, _HIGHER, "score", "Regulatory Score", min_value=-100,
            max_value=100, calculation_type=_COMPOSITE),
    # Product / tech
    _metric("product_maturity", "Product Maturity", FindingCategory.PRODUCT,
            Dimension.PRODUCT_TECH, 0.20, _HIGHER, "score", "Product Maturity Score",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
    _metric("pmf_score", "Product-Market Fit Score", FindingCategory.PRODUCT,
            Dimension.PRODUCT_TECH, 0.25, _HIGHER, "score", "PMF Score", min_value=0,
            max_value=100, calculation_type=_COMPOSITE),
    _metric("technical_moat", "Technical Moat Strength", FindingCategory.TECHNICAL,
            Dimension.PRODUCT_TECH, 0.15, _HIGHER, "score", "Moat Score", min_value=0,
            max_value=100, calculation_type=_COMPOSITE),
    _metric("scalability_score", "Architecture Scalability", FindingCategory.TECHNICAL,
            Dimension.PRODUCT_TECH, 0.15, _HIGHER, "score", "Scalability Score",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
    # GTM / traction
    _metric("nrr", "Net Revenue Retention", FindingCategory.CUSTOMER, Dimension.GTM_TRACTION,
            0.25, _HIGHER, "%", "Net Revenue Retention", min_value=0, max_value=200),
    _metric("churn_rate", "Monthly Churn Rate", FindingCategory.CUSTOMER,
            Dimension.GTM_TRACTION, 0.15, _LOWER, "%", "Monthly Churn", min_value=0,
            max_value=100),
    _metric("mrr_growth", "MRR Growth Rate (MoM)", FindingCategory.GTM,
            Dimension.GTM_TRACTION, 0.20, _HIGHER, "%", "MRR Growth Rate", min_value=-50,
            max_value=100),
    _metric("magic_number", "Magic Number", FindingCategory.GTM, Dimension.GTM_TRACTION,
            0.20, _HIGHER, "x", "Magic Number", min_value=0, max_value=5,
            calculation_type=_DERIVED, formula="net_new_arr / prior_quarter_sm_spend"),
    # Competitive
    _metric("market_concentration", "Market Concentration", FindingCategory.MARKET,
            Dimension.COMPETITIVE, 0.10, _TARGET, "%", "Market HHI", min_value=0,
            max_value=100, target_range=(20, 60), calculation_type=_COMPOSITE),
    _metric("competitive_window", "Competitive Window", FindingCategory.COMPETITIVE,
            Dimension.COMPETITIVE, 0.15, _HIGHER, "score", "Window Score", min_value=0,
            max_value=100, calculation_type=_COMPOSITE),
    _metric("differentiation_score", "Differentiation", FindingCategory.COMPETITIVE,
            Dimension.COMPETITIVE, 0.30, _HIGHER, "score", "Differentiation Score",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
    _metric("competitive_density", "Competitive Density", FindingCategory.COMPETITIVE,
            Dimension.COMPETITIVE, 0.25, _LOWER, "score", "Competitive Density",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
    # Exit
    _metric("expected_exit_multiple", "Expected Exit Multiple", FindingCategory.EXIT,
            Dimension.EXIT_POTENTIAL, 0.40, _HIGHER, "x", "Exit Multiple", min_value=0,
            max_value=100),
    _metric("comparable_exits_count", "Comparable Exits", FindingCategory.EXIT,
            Dimension.EXIT_POTENTIAL, 0.30, _HIGHER, "count", "Comparable Exits",
            min_value=0, max_value=50),
    _metric("exit_viability_score", "Exit Viability", FindingCategory.EXIT,
            Dimension.EXIT_POTENTIAL, 0.30, _HIGHER, "score", "Exit Viability Score",
            min_value=0, max_value=100, calculation_type=_COMPOSITE),
)

# Producer spellings -> registry names
METRIC_NAME_ALIASES: Final[dict[str, str]] = {
    "annual_recurring_revenue": "arr",
    "arr_growth_yoy": "arr_growth",
    "revenue_growth": "arr_growth",
    "net_revenue_retention": "nrr",
    "runway_months": "runway",
    "ltv_cac": "ltv_cac_ratio",
    "cac_payback_months": "cac_payback",
    "monthly_churn": "churn_rate",
    "churn": "churn_rate",
    "market_cagr": "market_growth_rate",
    "timing_score": "market_timing",
    "adoption_stage": "adoption_curve_position",
    "moat_strength": "technical_moat",
    "mrr_growth_rate": "mrr_growth",
    "expected_multiple": "expected_exit_multiple",
    "headcount": "team_size",
}

_NON_ALNUM = re.compile(r"[^a-z0-9_]")
_UNDERSCORES = re.compile(r"_+")


def normalize_metric_name(metric: str) -> str:
    """Normalize a producer's metric spelling onto a registry name.

    Lower-cases, replaces non-alphanumerics with underscores, collapses runs
    of underscores, then applies METRIC_NAME_ALIASES.
    """
    lowered = _UNDERSCORES.sub("_", _NON_ALNUM.sub("_", metric.strip().lower())).strip("_")
    return METRIC_NAME_ALIASES.get(lowered, lowered)


class MetricRegistry:
    """Read-mostly catalogue of metric definitions.

    Populated once at construction (built-in catalogue by default). Lookups
    by name, dimension and category are O(1).
    """

    def __init__(self, definitions: Iterable[MetricDefinition] | None = None) -> None:
        """Initialize the registry.

        Args:
            definitions: Definitions to register. Defaults to BUILT_IN_METRICS.
        """
        self._metrics: dict[str, MetricDefinition] = {}
        self._by_dimension: dict[Dimension, list[MetricDefinition]] = {}
        self._by_category: dict[FindingCategory, list[MetricDefinition]] = {}
        for definition in BUILT_IN_METRICS if definitions is None else definitions:
            self.register(definition)

    def register(self, definition: MetricDefinition, *, replace: bool = False) -> None:
        """Register a metric definition.

        Args:
            definition: Definition to add.
            replace: Allow replacing an existing definition with the same name.

        Raises:
            DuplicateMetricError: If the name exists and ``replace`` is False.
        """
        existing = self._metrics.get(definition.name)
        if existing is not None:
            if not replace:
                raise DuplicateMetricError(definition.name)
            self._by_dimension[existing.dimension].remove(existing)
            self._by_category[existing.category].remove(existing)

        self._metrics[definition.name] = definition
        self._by_dimension.setdefault(definition.dimension, []).append(definition)
        self._by_category.setdefault(definition.category, []).append(definition)

    def get(self, name: str) -> MetricDefinition | None:
        """Return the definition for ``name``, or None if unknown."""
        return self._metrics.get(name)

    def get_by_dimension(self, dimension: Dimension) -> list[MetricDefinition]:
        return list(self._by_dimension.get(dimension, ()))

    def get_by_category(self, category: FindingCategory) -> list[MetricDefinition]:
        return list(self._by_category.get(category, ()))

    def metric_names(self) -> list[str]:
        return list(self._metrics)

    def dimension_weight(self, dimension: Dimension) -> float:
        """Sum of the in-dimension weights of the metrics in ``dimension``."""
        return sum(m.weight for m in self._by_dimension.get(dimension, ()))

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def __len__(self) -> int:
        return len(self._metrics)

    def validate_value(self, name: str, value: float) -> bool:
        """Check a value against the metric's declared bounds.

        Fails soft: returns False when out of bounds, never raises. Unknown
        metrics have no bounds to violate and validate True.
        """
        definition = self._metrics.get(name)
        if definition is None:
            return True
        if definition.min_value is not None and value < definition.min_value:
            return False
        if definition.max_value is not None and value > definition.max_value:
            return False
        return True

    def score_value(self, name: str, value: float, percentile: float | None = None) -> float:
        """Convert a raw value or a benchmark percentile into a 0-100 score.

        Args:
            name: Registry metric name.
            value: Raw observed value.
            percentile: Benchmark percentile, if a benchmark comparison exists.

        Returns:
            Score clamped to [0, 100]. Unknown metrics return 50.
        """
        definition = self._metrics.get(name)
        if definition is None:
            logger.warning("Unknown metric %r, using neutral score %.0f", name, NEUTRAL_SCORE)
            return NEUTRAL_SCORE

        if percentile is not None:
            return clamp(_percentile_to_score(percentile, definition))

        if definition.direction == MetricDirection.HIGHER_BETTER:
            score = _score_higher_better(value, definition)
        elif definition.direction == MetricDirection.LOWER_BETTER:
            score = _score_lower_better(value, definition)
        else:
            score = _score_target_range(value, definition)
        return clamp(score)


def _percentile_to_score(percentile: float, definition: MetricDefinition) -> float:
    if definition.direction == MetricDirection.HIGHER_BETTER:
        return percentile
    if definition.direction == MetricDirection.LOWER_BETTER:
        return 100.0 - percentile
    # Target range: peak at the median, 2 points lost per point of deviation
    deviation = abs(percentile - 50.0)
    return max(0.0, 100.0 - deviation * _PERCENTILE_TARGET_FALLOFF)


def _score_higher_better(value: float, definition: MetricDefinition) -> float:
    if definition.min_value is None:
        return NEUTRAL_SCORE
    low = definition.min_value
    high = definition.max_value if definition.max_value is not None else low * 10
    if value <= low:
        return 0.0
    if value >= high:
        return 100.0
    return (value - low) / (high - low) * 100.0


def _score_lower_better(value: float, definition: MetricDefinition) -> float:
    if definition.max_value is None:
        return NEUTRAL_SCORE
    low = definition.min_value if definition.min_value is not None else 0.0
    high = definition.max_value
    if value >= high:
        return 0.0
    if value <= low:
        return 100.0
    return (high - value) / (high - low) * 100.0


def _score_target_range(value: float, definition: MetricDefinition) -> float:
    target = definition.target_range
    if target is None:
        return NEUTRAL_SCORE

    if target.min <= value <= target.max:
        half_range = (target.max - target.min) / 2
        if half_range == 0:
            return 100.0
        midpoint = (target.min + target.max) / 2
        return 100.0 - abs(value - midpoint) / half_range * _TARGET_RANGE_INSIDE_SPREAD

    bound = target.min if value < target.min else target.max
    distance = abs(value - bound)
    penalty = min(_TARGET_RANGE_OUTSIDE_CEILING, distance / (abs(bound) or 1.0) * 100.0)
    return max(0.0, _TARGET_RANGE_OUTSIDE_CEILING - penalty)
