"""Pytest configuration and fixtures for dealscore tests.

Provides a controllable clock, benchmark row factories and environment
isolation for the configuration loader.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dealscore.scoring.benchmark_cache import BenchmarkCache, InMemoryBenchmarkRepository
from dealscore.scoring.models import (
    BenchmarkEntry,
    ConfidenceScore,
    FindingCategory,
    ScoredFinding,
)

DEALSCORE_ENV_VARS = (
    "DEALSCORE_BENCHMARK_CACHE_TTL_SECONDS",
    "DEALSCORE_BENCHMARK_FETCH_TIMEOUT_SECONDS",
    "DEALSCORE_BENCHMARK_RETRY_SECONDS",
    "DEALSCORE_GENERIC_SECTOR",
    "DEALSCORE_MIN_FINDINGS_PER_DIMENSION",
    "DEALSCORE_MIN_CONFIDENCE_FOR_INCLUSION",
    "DEALSCORE_CONFIDENCE_WEIGHTING",
    "DEALSCORE_DATABASE_URL",
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_entry(
    sector: str = "SaaS B2B",
    stage: str = "SEED",
    metric: str = "ARR Growth YoY",
    p25: float = 100.0,
    median: float = 150.0,
    p75: float = 250.0,
    source: str = "test",
) -> BenchmarkEntry:
    """Build a BenchmarkEntry with sensible defaults."""
    return BenchmarkEntry(
        sector=sector,
        stage=stage,
        metric=metric,
        p25=p25,
        median=median,
        p75=p75,
        source=source,
    )


def make_finding(
    metric: str,
    normalized_value: float | None,
    confidence: int = 80,
    *,
    category: FindingCategory = FindingCategory.FINANCIAL,
    benchmark: BenchmarkEntry | None = None,
    fallback_used: str | None = None,
    finding_id: str | None = None,
) -> ScoredFinding:
    """Build a ScoredFinding with just the fields aggregation looks at."""
    return ScoredFinding(
        id=finding_id or f"test-{metric}-{confidence}",
        source="test",
        metric=metric,
        category=category,
        value=normalized_value,
        normalized_value=normalized_value,
        benchmark=benchmark,
        fallback_used=fallback_used,
        confidence=ConfidenceScore.from_score(confidence),
        created_at=datetime(2025, 1, 1, tzinfo=UTC),
    )


@pytest.fixture(autouse=True)
def clean_dealscore_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove DEALSCORE_* variables so tests never see the host's settings."""
    for name in DEALSCORE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def seed_benchmark() -> BenchmarkEntry:
    """ARR growth benchmark {p25: 100, median: 150, p75: 250}."""
    return make_entry()


@pytest.fixture
def repository() -> InMemoryBenchmarkRepository:
    """Repository with SaaS and Fintech rows across a few stages."""
    return InMemoryBenchmarkRepository(
        [
            make_entry("SaaS B2B", "SEED", "ARR Growth YoY", 100, 150, 250),
            make_entry("SaaS B2B", "SERIES_A", "ARR Growth YoY", 70, 100, 150),
            make_entry("SaaS B2B", "SEED", "Net Revenue Retention", 95, 105, 120),
            make_entry("SaaS B2B", "SERIES_B", "Gross Margin", 70, 78, 84),
            make_entry("Fintech", "SERIES_A", "ARR Growth YoY", 60, 90, 140),
            make_entry("Fintech", "LATER", "ARR Growth YoY", 20, 30, 45),
            make_entry("Fintech", "SEED", "Take Rate", 1, 2, 3),
        ]
    )


@pytest.fixture
def cache(repository: InMemoryBenchmarkRepository, clock: FakeClock) -> BenchmarkCache:
    return BenchmarkCache(repository, ttl_seconds=300, retry_seconds=30, clock=clock)
