"""Tests for BenchmarkCache — TTL snapshot and four-tier lookup cascade.

Covers:
- Exact hits and alias normalization
- Nearest-stage fallback with lower-ordinal tie-break
- Generic-sector fallbacks (requested stage, then nearest stage)
- Not-found results never raise
- TTL reloads driven by an injected clock
- Failed and timed-out reloads keep the last snapshot and mark it stale
- A hung fetch is waited on again rather than restarted, on a daemon thread
"""

from __future__ import annotations

import threading

import pytest

from conftest import FakeClock, make_entry
from dealscore.config import ScoringConfig
from dealscore.scoring.benchmark_cache import BenchmarkCache, InMemoryBenchmarkRepository
from dealscore.scoring.models import BenchmarkEntry, BenchmarkOrigin, FallbackTier


class CountingRepository(InMemoryBenchmarkRepository):
    """Repository that counts fetches and can be switched to fail."""

    def __init__(self, entries: list[BenchmarkEntry]) -> None:
        super().__init__(entries)
        self.calls = 0
        self.fail = False

    def fetch_all(self) -> list[BenchmarkEntry]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("database unavailable")
        return super().fetch_all()


class BlockingRepository:
    """Repository whose fetch hangs until released."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.calls = 0

    def fetch_all(self) -> list[BenchmarkEntry]:
        self.calls += 1
        self.release.wait(timeout=5)
        return [make_entry()]


class TestLookupCascade:
    """Tests for BenchmarkCache.lookup."""

    def test_exact_hit(self, cache: BenchmarkCache) -> None:
        """Exact sector/stage/metric match is returned as exact."""
        result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")

        assert result.found is True
        assert result.exact is True
        assert result.fallback_used is None
        assert result.fallback_tier == FallbackTier.EXACT
        assert result.origin == BenchmarkOrigin.REPOSITORY
        assert result.benchmark is not None
        assert result.benchmark.median == 150

    def test_aliases_normalized(self, cache: BenchmarkCache) -> None:
        """Sector, stage and metric aliases resolve to canonical keys."""
        result = cache.lookup("saas", "seed", "arr_growth")
        assert result.exact is True
        assert result.benchmark is not None
        assert result.benchmark.cache_key == "SaaS B2B:SEED:ARR Growth YoY"

    def test_nearest_stage(self, cache: BenchmarkCache) -> None:
        """Missing stage falls back to the nearest stage of the same sector."""
        result = cache.lookup("fintech", "Series B", "ARR Growth YoY")

        assert result.found is True
        assert result.exact is False
        assert result.fallback_tier == FallbackTier.NEAREST_STAGE
        assert result.fallback_used == "stage_fallback:SERIES_A"

    def test_nearest_stage_prefers_closer_later_stage(self, cache: BenchmarkCache) -> None:
        """Closer later stage beats a farther earlier one."""
        result = cache.lookup("Fintech", "SERIES_C", "ARR Growth YoY")
        assert result.fallback_used == "stage_fallback:LATER"

    def test_nearest_stage_tie_prefers_lower_ordinal(self, clock: FakeClock) -> None:
        """Equal distance resolves to the lower stage."""
        repo = InMemoryBenchmarkRepository(
            [
                make_entry("Fintech", "SERIES_B", "Take Rate", 2, 3, 4),
                make_entry("Fintech", "SEED", "Take Rate", 1, 2, 3),
            ]
        )
        cache = BenchmarkCache(repo, clock=clock)

        result = cache.lookup("Fintech", "SERIES_A", "Take Rate")
        assert result.fallback_used == "stage_fallback:SEED"

    def test_generic_sector_same_stage(self, cache: BenchmarkCache) -> None:
        """Unknown sector falls back to the generic sector at the same stage."""
        result = cache.lookup("Healthtech", "SEED", "ARR Growth YoY")

        assert result.found is True
        assert result.exact is False
        assert result.fallback_tier == FallbackTier.GENERIC_SECTOR
        assert result.fallback_used == "sector_fallback:SaaS B2B"
        assert result.benchmark is not None
        assert result.benchmark.sector == "SaaS B2B"

    def test_generic_sector_nearest_stage(self, cache: BenchmarkCache) -> None:
        """Generic sector without the stage uses its nearest stage."""
        result = cache.lookup("healthtech", "SERIES_B", "Net Revenue Retention")

        assert result.fallback_tier == FallbackTier.GENERIC_SECTOR_ANY_STAGE
        assert result.fallback_used == "generic_fallback:SaaS B2B:SEED"

    def test_configured_generic_sector(
        self, repository: InMemoryBenchmarkRepository, clock: FakeClock
    ) -> None:
        """The configured generic sector is used for fallbacks."""
        cache = BenchmarkCache(repository, generic_sector="fintech", clock=clock)

        result = cache.lookup("Healthtech", "SEED", "Take Rate")
        assert result.fallback_used == "sector_fallback:Fintech"

    def test_not_found(self, cache: BenchmarkCache) -> None:
        """Nothing matching returns a not-found result instead of raising."""
        result = cache.lookup("healthtech", "SEED", "Unknown Metric")

        assert result.found is False
        assert result.exact is False
        assert result.benchmark is None
        assert result.fallback_used is None

    def test_unmapped_names_pass_through(self, clock: FakeClock) -> None:
        """Unmapped names are used as given."""
        repo = InMemoryBenchmarkRepository([make_entry("Agritech", "Bridge", "Yield", 1, 2, 3)])
        cache = BenchmarkCache(repo, clock=clock)

        assert cache.lookup("Agritech", "Bridge", "Yield").exact is True

    def test_unknown_target_stage_uses_lowest_ordinal(self, cache: BenchmarkCache) -> None:
        """An unknown target stage ranks candidates by ordinal."""
        result = cache.lookup("Fintech", "Bridge", "ARR Growth YoY")
        assert result.fallback_used == "stage_fallback:SERIES_A"


class TestReads:
    """Tests for the non-cascade read helpers."""

    def test_get_benchmarks_for_sector(self, cache: BenchmarkCache) -> None:
        """All rows of a sector are listed."""
        rows = cache.get_benchmarks_for_sector("saas")
        assert len(rows) == 4
        assert {r.sector for r in rows} == {"SaaS B2B"}

    def test_get_exact_is_not_normalized(self, cache: BenchmarkCache) -> None:
        """get_exact does not apply aliases."""
        assert cache.get_exact("saas", "seed", "arr_growth") is None
        assert cache.get_exact("SaaS B2B", "SEED", "ARR Growth YoY") is not None

    def test_get_available_metrics(self, cache: BenchmarkCache) -> None:
        """Metrics available for a sector and stage."""
        metrics = cache.get_available_metrics("saas", "seed")
        assert sorted(metrics) == ["ARR Growth YoY", "Net Revenue Retention"]

    def test_calculate_percentile(self, cache: BenchmarkCache) -> None:
        """Percentile helper delegates to the 3-anchor engine."""
        assert cache.calculate_percentile(150, make_entry()).percentile == 50

    def test_duplicate_keys_keep_last_row(self, clock: FakeClock) -> None:
        """Duplicate keys keep the last row fetched."""
        repo = InMemoryBenchmarkRepository(
            [make_entry(median=150, source="old"), make_entry(median=160, source="new")]
        )
        cache = BenchmarkCache(repo, clock=clock)

        result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert result.benchmark is not None
        assert result.benchmark.source == "new"


class TestReloading:
    """TTL and failure handling."""

    def test_nothing_loaded_before_first_read(self, clock: FakeClock) -> None:
        """The repository is not read until the first lookup."""
        repo = CountingRepository([make_entry()])
        cache = BenchmarkCache(repo, clock=clock)

        status = cache.status()
        assert repo.calls == 0
        assert status.entry_count == 0
        assert status.loaded_at is None

    def test_reload_after_ttl(self, clock: FakeClock) -> None:
        """The snapshot reloads once the TTL has passed."""
        repo = CountingRepository([make_entry()])
        cache = BenchmarkCache(repo, ttl_seconds=300, clock=clock)

        cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        clock.advance(299)
        cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert repo.calls == 1

        clock.advance(1)
        cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert repo.calls == 2
        assert cache.status().loaded_at == clock.now

    def test_new_rows_visible_after_reload(self, clock: FakeClock) -> None:
        """Rows added to the repository appear after a reload."""
        repo = CountingRepository([make_entry()])
        cache = BenchmarkCache(repo, ttl_seconds=60, clock=clock)
        assert cache.lookup("Fintech", "SEED", "Take Rate").found is False

        repo.add(make_entry("Fintech", "SEED", "Take Rate", 1, 2, 3))
        clock.advance(60)
        assert cache.lookup("Fintech", "SEED", "Take Rate").exact is True

    def test_failed_reload_serves_previous_snapshot(self, clock: FakeClock) -> None:
        """A failed reload keeps the previous snapshot and marks it stale."""
        repo = CountingRepository([make_entry()])
        cache = BenchmarkCache(repo, ttl_seconds=300, retry_seconds=30, clock=clock)
        cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")

        repo.fail = True
        clock.advance(300)
        result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")

        assert result.found is True
        assert result.stale is True
        assert cache.is_stale is True
        status = cache.status()
        assert status.entry_count == 1
        assert status.last_error is not None
        assert "RuntimeError" in status.last_error

    def test_retry_interval_after_failure(self, clock: FakeClock) -> None:
        """A failed reload is retried after the retry interval."""
        repo = CountingRepository([make_entry()])
        repo.fail = True
        cache = BenchmarkCache(repo, ttl_seconds=300, retry_seconds=30, clock=clock)

        assert cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY").found is False
        assert repo.calls == 1

        clock.advance(10)
        cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert repo.calls == 1

        repo.fail = False
        clock.advance(20)
        result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert repo.calls == 2
        assert result.found is True
        assert result.stale is False
        assert cache.status().last_error is None

    def test_not_found_carries_stale_flag(self, clock: FakeClock) -> None:
        """Not-found results carry the stale flag too."""
        repo = CountingRepository([])
        repo.fail = True
        cache = BenchmarkCache(repo, clock=clock)

        result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert result.found is False
        assert result.stale is True

    def test_timed_out_fetch_marks_stale(self, clock: FakeClock) -> None:
        """A fetch exceeding the timeout marks the cache stale."""
        repo = BlockingRepository()
        cache = BenchmarkCache(repo, fetch_timeout_seconds=0.05, clock=clock)
        try:
            result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        finally:
            repo.release.set()

        assert result.found is False
        assert result.stale is True
        last_error = cache.status().last_error
        assert last_error is not None
        assert "timed out" in last_error

    def test_hung_fetch_is_not_restarted(self, clock: FakeClock) -> None:
        """Retries wait on the fetch already in flight and use its rows once it returns."""
        repo = BlockingRepository()
        cache = BenchmarkCache(repo, fetch_timeout_seconds=0.2, retry_seconds=30, clock=clock)
        try:
            assert cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY").stale is True
            clock.advance(30)
            assert cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY").stale is True
            assert repo.calls == 1
        finally:
            repo.release.set()

        clock.advance(30)
        result = cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")

        assert result.found is True
        assert result.stale is False
        assert repo.calls == 1

    def test_fetch_thread_does_not_block_exit(self, clock: FakeClock) -> None:
        """A hung fetch runs on a daemon thread."""
        repo = BlockingRepository()
        cache = BenchmarkCache(repo, fetch_timeout_seconds=0.05, clock=clock)
        try:
            cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
            fetchers = [t for t in threading.enumerate() if t.name == "benchmark-fetch"]
            assert fetchers
            assert all(t.daemon for t in fetchers)
        finally:
            repo.release.set()

    def test_refresh(self, clock: FakeClock) -> None:
        """refresh reports whether the reload succeeded."""
        repo = CountingRepository([make_entry()])
        cache = BenchmarkCache(repo, clock=clock)

        assert cache.refresh() is True
        repo.fail = True
        assert cache.refresh() is False
        assert cache.status().entry_count == 1

    def test_from_config(
        self, repository: InMemoryBenchmarkRepository, clock: FakeClock
    ) -> None:
        """from_config applies TTL, timeout and generic sector."""
        config = ScoringConfig(cache_ttl_seconds=10, generic_sector="fintech")
        cache = BenchmarkCache.from_config(repository, config, clock=clock)

        cache.lookup("SaaS B2B", "SEED", "ARR Growth YoY")
        assert cache.generic_sector == "Fintech"
        assert cache.status().next_reload_at == pytest.approx(clock.now + 10)
