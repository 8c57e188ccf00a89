"""Database connectivity for the benchmark store.

Environment Variables:
    DEALSCORE_DATABASE_URL: SQLAlchemy URL of the benchmark database

Fails closed on missing configuration: callers that need the database get a
DatabaseConfigError instead of a silently unconfigured engine.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEALSCORE_DATABASE_URL_ENV = "DEALSCORE_DATABASE_URL"

_engine: Engine | None = None


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""


def is_database_configured() -> bool:
    """Check if a benchmark database is configured via environment."""
    return bool(os.environ.get(DEALSCORE_DATABASE_URL_ENV, "").strip())


def _normalize_url(url: str) -> str:
    """Rewrite legacy ``postgres://`` URLs to the ``postgresql://`` scheme."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url() -> str:
    """Get the database URL from environment.

    Returns:
        Database connection string.

    Raises:
        DatabaseConfigError: If DEALSCORE_DATABASE_URL is not set.
    """
    url = os.environ.get(DEALSCORE_DATABASE_URL_ENV, "").strip()
    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {DEALSCORE_DATABASE_URL_ENV} environment variable."
        )
    return _normalize_url(url)


def get_engine() -> Engine:
    """Get or create the benchmark database engine.

    Returns:
        SQLAlchemy Engine.

    Raises:
        DatabaseConfigError: If DEALSCORE_DATABASE_URL is not set.
    """
    global _engine

    if _engine is None:
        url = get_database_url()
        if url.startswith("sqlite"):
            _engine = create_engine(url, echo=False)
        else:
            _engine = create_engine(
                url,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                echo=False,
            )
        logger.info("Created benchmark database engine")

    return _engine


def reset_engine() -> None:
    """Dispose of the cached engine (tests, URL changes)."""
    global _engine

    if _engine is not None:
        _engine.dispose()
        _engine = None
