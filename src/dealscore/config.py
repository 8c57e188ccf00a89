"""Scoring engine configuration loaded from the environment.

Environment variables (all optional):
- DEALSCORE_BENCHMARK_CACHE_TTL_SECONDS: benchmark cache TTL (default 300)
- DEALSCORE_BENCHMARK_FETCH_TIMEOUT_SECONDS: repository fetch timeout (default 5)
- DEALSCORE_BENCHMARK_RETRY_SECONDS: wait before retrying a failed reload (default 30)
- DEALSCORE_GENERIC_SECTOR: generic sector for fallback lookups (default "SaaS B2B")
- DEALSCORE_MIN_FINDINGS_PER_DIMENSION: findings needed to score a dimension (default 2)
- DEALSCORE_MIN_CONFIDENCE_FOR_INCLUSION: confidence floor for findings (default 25)
- DEALSCORE_CONFIDENCE_WEIGHTING: "1"/"0", weight scores by confidence (default 1)

Invalid values fail at load time with ScoringConfigError.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Final

logger = logging.getLogger(__name__)

ENV_CACHE_TTL_SECONDS: Final[str] = "DEALSCORE_BENCHMARK_CACHE_TTL_SECONDS"
ENV_FETCH_TIMEOUT_SECONDS: Final[str] = "DEALSCORE_BENCHMARK_FETCH_TIMEOUT_SECONDS"
ENV_RETRY_SECONDS: Final[str] = "DEALSCORE_BENCHMARK_RETRY_SECONDS"
ENV_GENERIC_SECTOR: Final[str] = "DEALSCORE_GENERIC_SECTOR"
ENV_MIN_FINDINGS_PER_DIMENSION: Final[str] = "DEALSCORE_MIN_FINDINGS_PER_DIMENSION"
ENV_MIN_CONFIDENCE_FOR_INCLUSION: Final[str] = "DEALSCORE_MIN_CONFIDENCE_FOR_INCLUSION"
ENV_CONFIDENCE_WEIGHTING: Final[str] = "DEALSCORE_CONFIDENCE_WEIGHTING"

DEFAULT_CACHE_TTL_SECONDS: Final[int] = 300
DEFAULT_FETCH_TIMEOUT_SECONDS: Final[int] = 5
DEFAULT_RETRY_SECONDS: Final[int] = 30
DEFAULT_GENERIC_SECTOR: Final[str] = "SaaS B2B"
DEFAULT_MIN_FINDINGS_PER_DIMENSION: Final[int] = 2
DEFAULT_MIN_CONFIDENCE_FOR_INCLUSION: Final[int] = 25
DEFAULT_CONFIDENCE_WEIGHTING: Final[bool] = True

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})


class ScoringConfigError(Exception):
    """Raised when scoring configuration is invalid."""


@dataclass(frozen=True)
class ScoringConfig:
    """Scoring engine configuration (immutable).

    Attributes:
        cache_ttl_seconds: Seconds a loaded benchmark snapshot stays fresh.
        fetch_timeout_seconds: Upper bound on one repository fetch.
        retry_seconds: Seconds to wait before retrying after a failed reload.
        generic_sector: Sector used by the generic fallback tiers.
        min_findings_per_dimension: Findings required to score a dimension.
        min_confidence_for_inclusion: Findings below this confidence are excluded.
        confidence_weighting: Weight scores by their confidence.
    """

    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    fetch_timeout_seconds: int = DEFAULT_FETCH_TIMEOUT_SECONDS
    retry_seconds: int = DEFAULT_RETRY_SECONDS
    generic_sector: str = DEFAULT_GENERIC_SECTOR
    min_findings_per_dimension: int = DEFAULT_MIN_FINDINGS_PER_DIMENSION
    min_confidence_for_inclusion: int = DEFAULT_MIN_CONFIDENCE_FOR_INCLUSION
    confidence_weighting: bool = DEFAULT_CONFIDENCE_WEIGHTING

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.cache_ttl_seconds <= 0:
            raise ScoringConfigError(
                f"{ENV_CACHE_TTL_SECONDS} must be a positive integer, "
                f"got {self.cache_ttl_seconds}"
            )
        if self.fetch_timeout_seconds <= 0:
            raise ScoringConfigError(
                f"{ENV_FETCH_TIMEOUT_SECONDS} must be a positive integer, "
                f"got {self.fetch_timeout_seconds}"
            )
        if self.retry_seconds <= 0:
            raise ScoringConfigError(
                f"{ENV_RETRY_SECONDS} must be a positive integer, got {self.retry_seconds}"
            )
        if not self.generic_sector.strip():
            raise ScoringConfigError(f"{ENV_GENERIC_SECTOR} must not be empty")
        if self.min_findings_per_dimension <= 0:
            raise ScoringConfigError(
                f"{ENV_MIN_FINDINGS_PER_DIMENSION} must be a positive integer, "
                f"got {self.min_findings_per_dimension}"
            )
        if not 0 <= self.min_confidence_for_inclusion <= 100:
            raise ScoringConfigError(
                f"{ENV_MIN_CONFIDENCE_FOR_INCLUSION} must be between 0 and 100, "
                f"got {self.min_confidence_for_inclusion}"
            )


def _parse_int(env_var: str, default: int, *, allow_zero: bool = False) -> int:
    """Parse an integer from an environment variable.

    Args:
        env_var: Environment variable name.
        default: Default value if env var is not set or blank.
        allow_zero: Accept 0 as a valid value.

    Returns:
        Parsed integer.

    Raises:
        ScoringConfigError: If value is set but not a valid integer.
    """
    raw = os.environ.get(env_var)
    if raw is None:
        return default

    raw = raw.strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as e:
        raise ScoringConfigError(f"{env_var} must be an integer, got '{raw}'") from e

    if value < 0 or (value == 0 and not allow_zero):
        kind = "a non-negative" if allow_zero else "a positive"
        raise ScoringConfigError(f"{env_var} must be {kind} integer, got {value}")

    return value


def _parse_bool(env_var: str, default: bool) -> bool:
    raw = os.environ.get(env_var)
    if raw is None or not raw.strip():
        return default

    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ScoringConfigError(f"{env_var} must be a boolean flag (1/0), got '{raw}'")


def load_scoring_config() -> ScoringConfig:
    """Load scoring configuration from environment variables.

    Returns:
        ScoringConfig with validated values.

    Raises:
        ScoringConfigError: If any value is invalid.
    """
    generic_sector = os.environ.get(ENV_GENERIC_SECTOR, "").strip() or DEFAULT_GENERIC_SECTOR

    config = ScoringConfig(
        cache_ttl_seconds=_parse_int(ENV_CACHE_TTL_SECONDS, DEFAULT_CACHE_TTL_SECONDS),
        fetch_timeout_seconds=_parse_int(
            ENV_FETCH_TIMEOUT_SECONDS, DEFAULT_FETCH_TIMEOUT_SECONDS
        ),
        retry_seconds=_parse_int(ENV_RETRY_SECONDS, DEFAULT_RETRY_SECONDS),
        generic_sector=generic_sector,
        min_findings_per_dimension=_parse_int(
            ENV_MIN_FINDINGS_PER_DIMENSION, DEFAULT_MIN_FINDINGS_PER_DIMENSION
        ),
        min_confidence_for_inclusion=_parse_int(
            ENV_MIN_CONFIDENCE_FOR_INCLUSION,
            DEFAULT_MIN_CONFIDENCE_FOR_INCLUSION,
            allow_zero=True,
        ),
        confidence_weighting=_parse_bool(ENV_CONFIDENCE_WEIGHTING, DEFAULT_CONFIDENCE_WEIGHTING),
    )

    logger.debug(
        "Scoring config loaded: ttl=%ds timeout=%ds generic_sector=%s min_findings=%d",
        config.cache_ttl_seconds,
        config.fetch_timeout_seconds,
        config.generic_sector,
        config.min_findings_per_dimension,
    )
    return config
