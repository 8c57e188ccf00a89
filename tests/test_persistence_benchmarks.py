"""Tests for benchmark persistence — SQL repository and engine helpers.

Covers:
- Reading benchmark rows from a SQL table
- Invalid rows skipped with a warning
- Fail-closed database configuration
- Engine caching and reset
- BenchmarkCache over the SQL repository, including an unavailable store
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from conftest import FakeClock
from dealscore.persistence import (
    DatabaseConfigError,
    SqlBenchmarkRepository,
    get_database_url,
    get_engine,
    is_database_configured,
    reset_engine,
)
from dealscore.persistence.db import DEALSCORE_DATABASE_URL_ENV
from dealscore.scoring.benchmark_cache import BenchmarkCache
from dealscore.scoring.models import FallbackTier

CREATE_TABLE = text(
    """
    CREATE TABLE benchmarks (
        sector TEXT NOT NULL,
        stage TEXT NOT NULL,
        metric_name TEXT NOT NULL,
        p25 REAL,
        median REAL,
        p75 REAL,
        source TEXT,
        updated_at TEXT
    )
    """
)

INSERT_ROW = text(
    """
    INSERT INTO benchmarks (sector, stage, metric_name, p25, median, p75, source, updated_at)
    VALUES (:sector, :stage, :metric_name, :p25, :median, :p75, :source, :updated_at)
    """
)

ROWS = [
    {
        "sector": "SaaS B2B",
        "stage": "SEED",
        "metric_name": "ARR Growth YoY",
        "p25": 100.0,
        "median": 150.0,
        "p75": 250.0,
        "source": "OpenView 2024",
        "updated_at": "2024-10-01T00:00:00",
    },
    {
        "sector": "SaaS B2B",
        "stage": "SERIES_A",
        "metric_name": "Net Revenue Retention",
        "p25": 95.0,
        "median": 105.0,
        "p75": 120.0,
        "source": None,
        "updated_at": None,
    },
    {
        "sector": "Fintech",
        "stage": "SEED",
        "metric_name": "Take Rate",
        "p25": 3.0,
        "median": 2.0,
        "p75": 1.0,
        "source": "bad",
        "updated_at": None,
    },
    {
        "sector": "Fintech",
        "stage": "SEED",
        "metric_name": "Gross Margin",
        "p25": 50.0,
        "median": None,
        "p75": 70.0,
        "source": "bad",
        "updated_at": None,
    },
]


@pytest.fixture
def sqlite_engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    with engine.begin() as conn:
        conn.execute(CREATE_TABLE)
        conn.execute(INSERT_ROW, ROWS)
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def _reset_cached_engine() -> Generator[None, None, None]:
    reset_engine()
    yield
    reset_engine()


class TestSqlBenchmarkRepository:
    """Tests for SqlBenchmarkRepository.fetch_all."""

    def test_reads_valid_rows(self, sqlite_engine: Engine) -> None:
        """Valid rows are read in key order."""
        entries = SqlBenchmarkRepository(sqlite_engine).fetch_all()

        assert [(e.sector, e.stage, e.metric) for e in entries] == [
            ("SaaS B2B", "SEED", "ARR Growth YoY"),
            ("SaaS B2B", "SERIES_A", "Net Revenue Retention"),
        ]
        seed = entries[0]
        assert (seed.p25, seed.median, seed.p75) == (100.0, 150.0, 250.0)
        assert seed.source == "OpenView 2024"
        assert seed.updated_at == datetime(2024, 10, 1)

    def test_null_source_becomes_empty(self, sqlite_engine: Engine) -> None:
        """A NULL source reads as an empty string."""
        entries = SqlBenchmarkRepository(sqlite_engine).fetch_all()
        assert entries[1].source == ""
        assert entries[1].updated_at is None

    def test_invalid_rows_logged(
        self, sqlite_engine: Engine, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Invalid rows are skipped with one warning each."""
        with caplog.at_level(logging.WARNING, logger="dealscore.persistence.benchmarks"):
            SqlBenchmarkRepository(sqlite_engine).fetch_all()

        skipped = [r.getMessage() for r in caplog.records]
        assert len(skipped) == 2
        assert any("Fintech/SEED/Take Rate" in m for m in skipped)
        assert any("Fintech/SEED/Gross Margin" in m for m in skipped)

    def test_missing_table_raises(self) -> None:
        """A missing table raises the driver error."""
        engine = create_engine(
            "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
        with pytest.raises(OperationalError):
            SqlBenchmarkRepository(engine).fetch_all()


class TestCacheOverSql:
    """BenchmarkCache backed by the SQL repository."""

    def test_lookup_through_sql(self, sqlite_engine: Engine, clock: FakeClock) -> None:
        """The cache finds exact rows from SQL."""
        cache = BenchmarkCache(SqlBenchmarkRepository(sqlite_engine), clock=clock)

        result = cache.lookup("saas", "seed", "arr_growth")

        assert result.found is True
        assert result.exact is True
        assert result.benchmark is not None
        assert result.benchmark.source == "OpenView 2024"

    def test_nearest_stage_through_sql(self, sqlite_engine: Engine, clock: FakeClock) -> None:
        """The nearest-stage fallback works over SQL rows."""
        cache = BenchmarkCache(SqlBenchmarkRepository(sqlite_engine), clock=clock)

        result = cache.lookup("SaaS B2B", "Seed", "NRR")

        assert result.fallback_used == "stage_fallback:SERIES_A"
        assert result.fallback_tier == FallbackTier.NEAREST_STAGE

    def test_unavailable_store_is_stale(self, clock: FakeClock) -> None:
        """A failing store marks the cache stale."""
        engine = create_engine(
            "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
        cache = BenchmarkCache(SqlBenchmarkRepository(engine), clock=clock)

        result = cache.lookup("saas", "seed", "arr_growth")

        assert result.found is False
        assert result.stale is True
        status = cache.status()
        assert status.stale is True
        assert status.last_error is not None
        assert "OperationalError" in status.last_error


class TestDatabaseConfig:
    """Tests for the environment-driven engine helpers."""

    def test_not_configured(self) -> None:
        """No URL fails closed."""
        assert is_database_configured() is False
        with pytest.raises(DatabaseConfigError, match=DEALSCORE_DATABASE_URL_ENV):
            get_database_url()
        with pytest.raises(DatabaseConfigError):
            get_engine()

    def test_blank_url_not_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A blank URL counts as not configured."""
        monkeypatch.setenv(DEALSCORE_DATABASE_URL_ENV, "   ")
        assert is_database_configured() is False

    def test_legacy_postgres_scheme(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """postgres:// URLs are rewritten to postgresql://."""
        monkeypatch.setenv(DEALSCORE_DATABASE_URL_ENV, "postgres://u:p@db:5432/deals")
        assert get_database_url() == "postgresql://u:p@db:5432/deals"

    def test_engine_cached_until_reset(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """The engine is cached until reset_engine."""
        monkeypatch.setenv(DEALSCORE_DATABASE_URL_ENV, f"sqlite:///{tmp_path / 'bench.db'}")

        first = get_engine()
        assert get_engine() is first

        reset_engine()
        assert get_engine() is not first

    def test_repository_over_configured_engine(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """The env-configured engine serves the rows written to its database."""
        url = f"sqlite:///{tmp_path / 'bench.db'}"
        seed_engine = create_engine(url)
        with seed_engine.begin() as conn:
            conn.execute(CREATE_TABLE)
            conn.execute(INSERT_ROW, ROWS[:1])
        seed_engine.dispose()
        monkeypatch.setenv(DEALSCORE_DATABASE_URL_ENV, url)

        entries = SqlBenchmarkRepository(get_engine()).fetch_all()
        assert [e.metric for e in entries] == ["ARR Growth YoY"]
