"""TTL benchmark cache with a four-tier fallback cascade.

The cache holds an immutable snapshot of every benchmark row keyed by
``sector:stage:metric``. A snapshot is reloaded lazily on the first call
after its TTL expires:
- the repository fetch runs on a daemon thread bounded by a timeout; a fetch
  still running from an earlier reload is waited on instead of starting another
- a successful fetch replaces the whole cache state in one assignment
- a failed or timed-out fetch keeps the previous snapshot, marks it stale
  and schedules a retry; scoring calls never fail because of it

Concurrent callers may trigger overlapping reloads. They share the fetch in
flight; each builds its own snapshot and swaps it in, so a half-built map is
never exposed.

Lookup cascade (first hit wins):
1. exact (sector, stage, metric)
2. same sector and metric, nearest stage by ordinal distance
3. generic sector, requested stage
4. generic sector, nearest available stage
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final, Protocol

from pydantic import BaseModel, ConfigDict, Field

from dealscore.config import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_GENERIC_SECTOR,
    DEFAULT_RETRY_SECONDS,
    ScoringConfig,
)
from dealscore.scoring.models import (
    STAGE_ORDER,
    BenchmarkEntry,
    BenchmarkLookupResult,
    BenchmarkOrigin,
    FallbackTier,
    PercentileResult,
    benchmark_key,
)
from dealscore.scoring.normalization import normalize_metric, normalize_sector, normalize_stage
from dealscore.scoring.percentile import calculate_percentile

logger = logging.getLogger(__name__)

_STAGE_INDEX: Final[dict[str, int]] = {stage.value: i for i, stage in enumerate(STAGE_ORDER)}

Clock = Callable[[], float]


class BenchmarkRepository(Protocol):
    """Read-only store of benchmark rows."""

    def fetch_all(self) -> list[BenchmarkEntry]:
        """Return every benchmark row."""
        ...


class InMemoryBenchmarkRepository:
    """Benchmark repository backed by a list, for tests and static deployments."""

    def __init__(self, entries: Iterable[BenchmarkEntry] = ()) -> None:
        self._entries: list[BenchmarkEntry] = list(entries)

    def add(self, entry: BenchmarkEntry) -> None:
        self._entries.append(entry)

    def fetch_all(self) -> list[BenchmarkEntry]:
        return list(self._entries)


@dataclass(frozen=True)
class _CacheState:
    """Everything a reader needs, swapped in as one object."""

    entries: Mapping[str, BenchmarkEntry] = field(
        default_factory=lambda: MappingProxyType({})
    )
    loaded_at: float | None = None
    next_reload_at: float | None = None
    stale: bool = False
    last_error: str | None = None


class BenchmarkCacheStatus(BaseModel):
    """Observable state of the benchmark cache."""

    model_config = ConfigDict(frozen=True)

    entry_count: int = Field(..., ge=0, description="Rows in the current snapshot")
    loaded_at: float | None = Field(default=None, description="Clock time of the last good load")
    next_reload_at: float | None = Field(default=None, description="Clock time of next reload")
    stale: bool = Field(..., description="Serving a snapshot whose reload failed")
    last_error: str | None = Field(default=None, description="Error of the last failed reload")


def _stage_rank(candidate: str, target: str) -> tuple[int, int, str]:
    """Sort key for nearest-stage selection.

    Ordinal distance first, lower ordinal on ties. Unknown target stages rank
    candidates by ordinal alone; unknown candidate stages sort last.
    """
    candidate_index = _STAGE_INDEX.get(candidate, len(_STAGE_INDEX))
    target_index = _STAGE_INDEX.get(target)
    distance = candidate_index if target_index is None else abs(candidate_index - target_index)
    return distance, candidate_index, candidate


class _FetchJob:
    """One ``fetch_all`` call running on a daemon thread.

    Interpreter exit does not wait for the thread.
    """

    def __init__(self, repository: BenchmarkRepository) -> None:
        self.rows: list[BenchmarkEntry] | None = None
        self.error: Exception | None = None
        self.done = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(repository,), name="benchmark-fetch", daemon=True
        )
        self._thread.start()

    def _run(self, repository: BenchmarkRepository) -> None:
        try:
            self.rows = repository.fetch_all()
        except Exception as e:
            self.error = e
        finally:
            self.done.set()


class BenchmarkCache:
    """In-memory benchmark snapshot over a BenchmarkRepository.

    Inject one instance per process (or per test) rather than sharing a
    module-level singleton; the clock is injectable for deterministic tests.
    """

    def __init__(
        self,
        repository: BenchmarkRepository,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        retry_seconds: float = DEFAULT_RETRY_SECONDS,
        generic_sector: str = DEFAULT_GENERIC_SECTOR,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the cache. Nothing is fetched until the first read.

        Args:
            repository: Source of benchmark rows.
            ttl_seconds: Seconds a snapshot stays fresh.
            fetch_timeout_seconds: Upper bound on one repository fetch.
            retry_seconds: Wait before retrying after a failed reload.
            generic_sector: Sector used by fallback tiers 3 and 4.
            clock: Monotonic clock returning seconds.
        """
        self._repository = repository
        self._ttl_seconds = ttl_seconds
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._retry_seconds = retry_seconds
        self._generic_sector = normalize_sector(generic_sector)
        self._clock = clock
        self._state = _CacheState()
        self._pending: _FetchJob | None = None
        self._pending_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        repository: BenchmarkRepository,
        config: ScoringConfig,
        *,
        clock: Clock = time.monotonic,
    ) -> BenchmarkCache:
        """Build a cache using the TTL, timeout and generic sector of ``config``."""
        return cls(
            repository,
            ttl_seconds=config.cache_ttl_seconds,
            fetch_timeout_seconds=config.fetch_timeout_seconds,
            retry_seconds=config.retry_seconds,
            generic_sector=config.generic_sector,
            clock=clock,
        )

    @property
    def generic_sector(self) -> str:
        return self._generic_sector

    @property
    def is_stale(self) -> bool:
        """True when the last reload attempt failed."""
        return self._state.stale

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _fetch(self) -> list[BenchmarkEntry]:
        # At most one fetch in flight: a hung one is waited on again, not replaced
        with self._pending_lock:
            job = self._pending
            if job is None:
                job = _FetchJob(self._repository)
                self._pending = job
            else:
                logger.debug("Waiting on a benchmark fetch started earlier")

        if not job.done.wait(timeout=self._fetch_timeout_seconds):
            raise TimeoutError(f"fetch exceeded {self._fetch_timeout_seconds}s")

        with self._pending_lock:
            if self._pending is job:
                self._pending = None
        if job.error is not None:
            raise job.error
        return job.rows if job.rows is not None else []

    def _reload(self) -> bool:
        now = self._clock()
        previous = self._state
        try:
            rows = self._fetch()
        except Exception as e:
            if isinstance(e, TimeoutError):
                error = f"Benchmark fetch timed out after {self._fetch_timeout_seconds}s"
            else:
                error = f"Benchmark fetch failed: {type(e).__name__}: {e}"
            logger.warning("%s; serving %d cached rows", error, len(previous.entries))
            self._state = _CacheState(
                entries=previous.entries,
                loaded_at=previous.loaded_at,
                next_reload_at=now + self._retry_seconds,
                stale=True,
                last_error=error,
            )
            return False

        entries: dict[str, BenchmarkEntry] = {}
        for row in rows:
            key = row.cache_key
            if key in entries:
                logger.debug("Duplicate benchmark row %s, keeping the last one", key)
            entries[key] = row

        self._state = _CacheState(
            entries=MappingProxyType(entries),
            loaded_at=now,
            next_reload_at=now + self._ttl_seconds,
        )
        logger.info("Loaded %d benchmark rows", len(entries))
        return True

    def _current(self) -> _CacheState:
        """Return the current state, reloading first when it is due."""
        state = self._state
        if state.next_reload_at is None or self._clock() >= state.next_reload_at:
            self._reload()
            state = self._state
        return state

    def refresh(self) -> bool:
        """Force a reload now.

        Returns:
            True if the reload succeeded, False if the previous snapshot was kept.
        """
        return self._reload()

    def status(self) -> BenchmarkCacheStatus:
        """Report the cache state without triggering a reload."""
        state = self._state
        return BenchmarkCacheStatus(
            entry_count=len(state.entries),
            loaded_at=state.loaded_at,
            next_reload_at=state.next_reload_at,
            stale=state.stale,
            last_error=state.last_error,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, sector: str, stage: str, metric: str) -> BenchmarkLookupResult:
        """Find a benchmark through the fallback cascade.

        Args:
            sector: Sector name (aliases accepted).
            stage: Stage name (aliases accepted).
            metric: Metric name (aliases accepted).

        Returns:
            BenchmarkLookupResult; ``found`` is False when no tier hits.
        """
        state = self._current()
        entries = state.entries
        norm_sector = normalize_sector(sector)
        norm_stage = normalize_stage(stage)
        norm_metric = normalize_metric(metric)

        exact = entries.get(benchmark_key(norm_sector, norm_stage, norm_metric))
        if exact is not None:
            return self._hit(exact, state, tier=FallbackTier.EXACT, label=None)

        same_sector = [
            e for e in entries.values() if e.sector == norm_sector and e.metric == norm_metric
        ]
        if same_sector:
            nearest = min(same_sector, key=lambda e: _stage_rank(e.stage, norm_stage))
            logger.debug(
                "Benchmark %s/%s/%s: using stage %s", norm_sector, norm_stage, norm_metric,
                nearest.stage,
            )
            return self._hit(
                nearest,
                state,
                tier=FallbackTier.NEAREST_STAGE,
                label=f"stage_fallback:{nearest.stage}",
            )

        generic = self._generic_sector
        generic_match = entries.get(benchmark_key(generic, norm_stage, norm_metric))
        if generic_match is not None:
            logger.debug("Benchmark %s/%s: using generic sector %s", norm_sector, norm_metric,
                         generic)
            return self._hit(
                generic_match,
                state,
                tier=FallbackTier.GENERIC_SECTOR,
                label=f"sector_fallback:{generic}",
            )

        generic_any = [
            e for e in entries.values() if e.sector == generic and e.metric == norm_metric
        ]
        if generic_any:
            nearest = min(generic_any, key=lambda e: _stage_rank(e.stage, norm_stage))
            logger.debug(
                "Benchmark %s/%s: using generic sector %s at stage %s",
                norm_sector, norm_metric, generic, nearest.stage,
            )
            return self._hit(
                nearest,
                state,
                tier=FallbackTier.GENERIC_SECTOR_ANY_STAGE,
                label=f"generic_fallback:{generic}:{nearest.stage}",
            )

        return BenchmarkLookupResult(found=False, exact=False, stale=state.stale)

    @staticmethod
    def _hit(
        entry: BenchmarkEntry, state: _CacheState, *, tier: FallbackTier, label: str | None
    ) -> BenchmarkLookupResult:
        return BenchmarkLookupResult(
            found=True,
            exact=tier == FallbackTier.EXACT,
            benchmark=entry,
            fallback_used=label,
            fallback_tier=tier,
            origin=BenchmarkOrigin.REPOSITORY,
            stale=state.stale,
        )

    def calculate_percentile(self, value: float, benchmark: BenchmarkEntry) -> PercentileResult:
        """Percentile of ``value`` against a benchmark's p25/median/p75."""
        return calculate_percentile(value, benchmark)

    def get_benchmarks_for_sector(self, sector: str) -> list[BenchmarkEntry]:
        """All cached rows of a sector (aliases accepted)."""
        norm_sector = normalize_sector(sector)
        return [e for e in self._current().entries.values() if e.sector == norm_sector]

    def get_exact(self, sector: str, stage: str, metric: str) -> BenchmarkEntry | None:
        """Row stored under exactly this key, without alias normalization."""
        return self._current().entries.get(benchmark_key(sector, stage, metric))

    def get_available_metrics(self, sector: str, stage: str) -> list[str]:
        """Metric names with a row for this sector and stage (aliases accepted)."""
        norm_sector = normalize_sector(sector)
        norm_stage = normalize_stage(stage)
        return [
            e.metric
            for e in self._current().entries.values()
            if e.sector == norm_sector and e.stage == norm_stage
        ]
