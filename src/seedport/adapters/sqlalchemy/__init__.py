"""SQLAlchemy adapter package for seedport."""

from __future__ import annotations

from .store import SqlAlchemyEntityStore
from .tables import build_tables, create_all_tables, enable_foreign_keys, ensure_sentinels
from .unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyEntityStore",
    "SqlAlchemyUnitOfWork",
    "StartupError",
    "build_tables",
    "configured_engine",
    "create_all_tables",
    "enable_foreign_keys",
    "ensure_sentinels",
    "is_started",
    "shutdown",
    "startup",
]
