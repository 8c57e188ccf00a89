"""Sector, stage and benchmark-metric name normalization.

Names are case-folded and stripped, then looked up in static alias tables.
Unmapped names pass through unchanged so that callers can still hit
repository rows stored under names the tables do not know about.
"""

from __future__ import annotations

import logging
import re
from typing import Final

from dealscore.scoring.models import Stage

logger = logging.getLogger(__name__)

SECTOR_ALIASES: Final[dict[str, str]] = {
    "saas": "SaaS B2B",
    "saas b2b": "SaaS B2B",
    "b2b saas": "SaaS B2B",
    "software": "SaaS B2B",
    "fintech": "Fintech",
    "financial technology": "Fintech",
    "healthtech": "Healthtech",
    "health tech": "Healthtech",
    "healthcare": "Healthtech",
    "ai": "AI/ML",
    "ai/ml": "AI/ML",
    "machine learning": "AI/ML",
    "artificial intelligence": "AI/ML",
    "marketplace": "Marketplace",
    "marketplaces": "Marketplace",
    "deeptech": "Deeptech",
    "deep tech": "Deeptech",
    "hardware": "Deeptech",
}

STAGE_ALIASES: Final[dict[str, str]] = {
    "pre-seed": "PRE_SEED",
    "preseed": "PRE_SEED",
    "pre_seed": "PRE_SEED",
    "pre seed": "PRE_SEED",
    "seed": "SEED",
    "series a": "SERIES_A",
    "series_a": "SERIES_A",
    "series-a": "SERIES_A",
    "a": "SERIES_A",
    "series b": "SERIES_B",
    "series_b": "SERIES_B",
    "series-b": "SERIES_B",
    "b": "SERIES_B",
    "series c": "SERIES_C",
    "series_c": "SERIES_C",
    "series-c": "SERIES_C",
    "c": "SERIES_C",
    "later": "LATER",
    "growth": "LATER",
}

METRIC_ALIASES: Final[dict[str, str]] = {
    "arr_growth": "ARR Growth YoY",
    "arr growth": "ARR Growth YoY",
    "revenue_growth": "ARR Growth YoY",
    "growth_rate": "ARR Growth YoY",
    "nrr": "Net Revenue Retention",
    "net_revenue_retention": "Net Revenue Retention",
    "retention": "Net Revenue Retention",
    "gross_margin": "Gross Margin",
    "margin": "Gross Margin",
    "cac_payback": "CAC Payback",
    "cac payback": "CAC Payback",
    "payback": "CAC Payback",
    "burn_multiple": "Burn Multiple",
    "burn multiple": "Burn Multiple",
    "valuation_multiple": "Valuation Multiple",
    "valuation": "Valuation Multiple",
    "arr_multiple": "Valuation Multiple",
    "ltv_cac": "LTV/CAC Ratio",
    "ltv/cac": "LTV/CAC Ratio",
    "ltv cac ratio": "LTV/CAC Ratio",
    "magic_number": "Magic Number",
    "magic number": "Magic Number",
    "rule_of_40": "Rule of 40",
    "rule of 40": "Rule of 40",
    "take_rate": "Take Rate",
    "take rate": "Take Rate",
}

_NON_STAGE_CHARS = re.compile(r"[^A-Z_]")


def _fold(name: str) -> str:
    return name.strip().casefold()


def normalize_sector(sector: str) -> str:
    """Map a sector name onto its canonical benchmark sector."""
    return SECTOR_ALIASES.get(_fold(sector), sector)


def normalize_stage(stage: str) -> str:
    """Map a stage name onto its canonical benchmark stage."""
    return STAGE_ALIASES.get(_fold(stage), stage)


def normalize_metric(metric: str) -> str:
    """Map a metric name onto its canonical benchmark metric name."""
    return METRIC_ALIASES.get(_fold(metric), metric)


def coerce_stage(stage: str | None, default: Stage = Stage.SEED) -> Stage:
    """Resolve free-form stage text to a Stage, falling back to ``default``.

    Alias lookup first, then exact enum values, then keyword matching
    ("Pre-Seed round", "Series B extension", "growth equity").

    Args:
        stage: Stage text as declared on the deal, or None.
        default: Stage used when nothing matches.

    Returns:
        Resolved Stage.
    """
    if not stage or not stage.strip():
        return default

    aliased = normalize_stage(stage)
    if aliased in Stage.__members__:
        return Stage(aliased)

    upper = _NON_STAGE_CHARS.sub("", stage.strip().upper().replace(" ", "_").replace("-", "_"))
    if "PRE" in upper:
        return Stage.PRE_SEED
    if "SEED" in upper:
        return Stage.SEED
    if "SERIES_A" in upper:
        return Stage.SERIES_A
    if "SERIES_B" in upper:
        return Stage.SERIES_B
    if "SERIES_C" in upper:
        return Stage.SERIES_C
    if "LATE" in upper or "GROWTH" in upper:
        return Stage.LATER

    logger.warning("Unrecognized stage %r, defaulting to %s", stage, default.value)
    return default
