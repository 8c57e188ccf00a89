"""SQL-backed benchmark repository.

Reads the ``benchmarks`` table:

    sector, stage, metric_name, p25, median, p75, source, updated_at

Rows that fail validation (missing anchors, p25 > median, ...) are skipped
with a warning so that one bad row cannot take the whole cache down.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import text

from dealscore.scoring.models import BenchmarkEntry

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

_SELECT_ALL = text(
    """
    SELECT sector, stage, metric_name, p25, median, p75, source, updated_at
    FROM benchmarks
    ORDER BY sector, stage, metric_name
    """
)


def _row_to_entry(row: dict[str, Any]) -> BenchmarkEntry:
    return BenchmarkEntry(
        sector=row["sector"],
        stage=row["stage"],
        metric=row["metric_name"],
        p25=row["p25"],
        median=row["median"],
        p75=row["p75"],
        source=row["source"] or "",
        updated_at=row["updated_at"],
    )


class SqlBenchmarkRepository:
    """Benchmark repository over a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def fetch_all(self) -> list[BenchmarkEntry]:
        """Read every valid benchmark row.

        Raises:
            SQLAlchemyError: If the query fails; the cache keeps its last
                good snapshot in that case.
        """
        with self._engine.connect() as conn:
            rows = conn.execute(_SELECT_ALL).mappings().all()

        entries: list[BenchmarkEntry] = []
        for row in rows:
            try:
                entries.append(_row_to_entry(dict(row)))
            except ValidationError as e:
                logger.warning(
                    "Skipping invalid benchmark row %s/%s/%s: %s",
                    row["sector"], row["stage"], row["metric_name"], e.errors()[0]["msg"],
                )

        skipped = len(rows) - len(entries)
        logger.debug("Fetched %d benchmark rows (%d skipped)", len(entries), skipped)
        return entries
