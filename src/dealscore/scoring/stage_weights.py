"""Dimension weights by investment stage, adjusted by sector.

Team dominates early and financials dominate late:
- PRE_SEED: team is everything, vision and market matter
- SEED: team still dominant, early traction appears
- SERIES_A: product-market fit proven, GTM becomes critical
- SERIES_B and later: unit economics and financials dominate

Sector adjustments are sparse multipliers on top of the stage row. After
multiplying, the vector is renormalized, rounded to 2 decimals and any
residual rounding error is added to the largest weight (lexicographically
first dimension name on ties).
"""

from __future__ import annotations

import logging
import re
from typing import Final

from dealscore.scoring.models import (
    WEIGHT_SUM_TOLERANCE,
    Dimension,
    DimensionWeights,
    Stage,
)
from dealscore.scoring.normalization import coerce_stage, normalize_sector
from dealscore.scoring.numeric import round_half_up

logger = logging.getLogger(__name__)

_D = Dimension

STAGE_WEIGHTS: Final[dict[Stage, dict[Dimension, float]]] = {
    Stage.PRE_SEED: {
        _D.TEAM: 0.40,
        _D.FINANCIALS: 0.05,
        _D.MARKET: 0.20,
        _D.PRODUCT_TECH: 0.15,
        _D.GTM_TRACTION: 0.05,
        _D.COMPETITIVE: 0.10,
        _D.EXIT_POTENTIAL: 0.05,
    },
    Stage.SEED: {
        _D.TEAM: 0.30,
        _D.FINANCIALS: 0.10,
        _D.MARKET: 0.15,
        _D.PRODUCT_TECH: 0.15,
        _D.GTM_TRACTION: 0.15,
        _D.COMPETITIVE: 0.10,
        _D.EXIT_POTENTIAL: 0.05,
    },
    Stage.SERIES_A: {
        _D.TEAM: 0.20,
        _D.FINANCIALS: 0.20,
        _D.MARKET: 0.15,
        _D.PRODUCT_TECH: 0.15,
        _D.GTM_TRACTION: 0.20,
        _D.COMPETITIVE: 0.05,
        _D.EXIT_POTENTIAL: 0.05,
    },
    Stage.SERIES_B: {
        _D.TEAM: 0.15,
        _D.FINANCIALS: 0.30,
        _D.MARKET: 0.10,
        _D.PRODUCT_TECH: 0.10,
        _D.GTM_TRACTION: 0.20,
        _D.COMPETITIVE: 0.05,
        _D.EXIT_POTENTIAL: 0.10,
    },
    Stage.SERIES_C: {
        _D.TEAM: 0.10,
        _D.FINANCIALS: 0.35,
        _D.MARKET: 0.10,
        _D.PRODUCT_TECH: 0.10,
        _D.GTM_TRACTION: 0.15,
        _D.COMPETITIVE: 0.05,
        _D.EXIT_POTENTIAL: 0.15,
    },
    Stage.LATER: {
        _D.TEAM: 0.10,
        _D.FINANCIALS: 0.35,
        _D.MARKET: 0.10,
        _D.PRODUCT_TECH: 0.10,
        _D.GTM_TRACTION: 0.15,
        _D.COMPETITIVE: 0.05,
        _D.EXIT_POTENTIAL: 0.15,
    },
}

SECTOR_ADJUSTMENTS: Final[dict[str, dict[Dimension, float]]] = {
    "deeptech": {_D.PRODUCT_TECH: 1.5, _D.GTM_TRACTION: 0.5, _D.EXIT_POTENTIAL: 0.7},
    "saas": {_D.FINANCIALS: 1.3, _D.GTM_TRACTION: 1.3, _D.PRODUCT_TECH: 0.8},
    "biotech": {_D.TEAM: 1.4, _D.PRODUCT_TECH: 1.3, _D.GTM_TRACTION: 0.5, _D.COMPETITIVE: 0.7},
    "healthtech": {_D.TEAM: 1.3, _D.PRODUCT_TECH: 1.2, _D.GTM_TRACTION: 0.7},
    "marketplace": {_D.GTM_TRACTION: 1.5, _D.COMPETITIVE: 1.3, _D.FINANCIALS: 0.8},
    "fintech": {_D.FINANCIALS: 1.3, _D.COMPETITIVE: 1.2, _D.PRODUCT_TECH: 1.1},
}

# Canonical benchmark sectors -> adjustment keys
_CANONICAL_SECTOR_KEYS: Final[dict[str, str]] = {
    "SaaS B2B": "saas",
    "Fintech": "fintech",
    "Healthtech": "healthtech",
    "Marketplace": "marketplace",
    "Deeptech": "deeptech",
}

_NON_LETTERS = re.compile(r"[^a-z]")


def sector_adjustment_key(sector: str | None) -> str | None:
    """Resolve a sector name to its SECTOR_ADJUSTMENTS key, if any.

    The sector's letters, lower-cased, are tried first ("Deep-Tech" ->
    "deeptech"), then the canonical alias ("b2b saas" -> "SaaS B2B" -> "saas").
    """
    if not sector or not sector.strip():
        return None
    letters = _NON_LETTERS.sub("", sector.lower())
    if letters in SECTOR_ADJUSTMENTS:
        return letters
    return _CANONICAL_SECTOR_KEYS.get(normalize_sector(sector))


def base_weights(stage: str | Stage | None) -> dict[Dimension, float]:
    """Unadjusted stage row; unknown or empty stages fall back to SEED."""
    return dict(STAGE_WEIGHTS[coerce_stage(stage)])


def _renormalize(weights: dict[Dimension, float]) -> dict[Dimension, float]:
    total = sum(weights.values())
    result = {d: round_half_up(w / total, 2) for d, w in weights.items()}

    new_total = sum(result.values())
    if abs(new_total - 1.0) > WEIGHT_SUM_TOLERANCE:
        largest = min(result, key=lambda d: (-result[d], d.value))
        result[largest] = round_half_up(result[largest] + (1.0 - new_total), 2)
        logger.debug("Residual %.4f added to %s", 1.0 - new_total, largest.value)
    return result


def get_weights_for_deal(stage: str | Stage | None, sector: str | None) -> DimensionWeights:
    """Dimension weights for a deal's stage and sector.

    Args:
        stage: Deal stage text; unknown or empty falls back to SEED.
        sector: Deal sector text; sectors without adjustments keep the
            stage row unchanged.

    Returns:
        DimensionWeights summing to 1.00 +/- 0.001.
    """
    weights = base_weights(stage)

    key = sector_adjustment_key(sector)
    if key is None:
        return DimensionWeights(weights=weights)

    for dimension, multiplier in SECTOR_ADJUSTMENTS[key].items():
        weights[dimension] *= multiplier
    return DimensionWeights(weights=_renormalize(weights))
