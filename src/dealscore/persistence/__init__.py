"""Benchmark persistence.

Provides SQLAlchemy engine helpers and the SQL-backed benchmark repository.
"""

from dealscore.persistence.benchmarks import SqlBenchmarkRepository
from dealscore.persistence.db import (
    DatabaseConfigError,
    get_database_url,
    get_engine,
    is_database_configured,
    reset_engine,
)

__all__ = [
    "DatabaseConfigError",
    "SqlBenchmarkRepository",
    "get_database_url",
    "get_engine",
    "is_database_configured",
    "reset_engine",
]
