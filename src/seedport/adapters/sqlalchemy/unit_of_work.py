"""SQLAlchemy engine lifecycle and the import unit of work."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine

from seedport.adapters.sqlalchemy.store import SqlAlchemyEntityStore
from seedport.adapters.sqlalchemy.tables import create_all_tables, enable_foreign_keys
from seedport.config.importing import DEFAULT_SENTINEL_ID
from seedport.config.storage import get_database_config

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Connection, Engine

    from seedport.adapters.sqlalchemy.tables import TableMap
    from seedport.domain.schema import Schema


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None
    tables: TableMap = field(default_factory=dict)
    sentinel_id: int = DEFAULT_SENTINEL_ID

    def require_engine(self) -> Engine:
        if self.engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call seedport.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        return self.engine


_STATE = _AdapterState()


def startup(
    schema: Schema,
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    sentinel_id: int = DEFAULT_SENTINEL_ID,
    force: bool = False,
) -> None:
    """Create the engine, the schema's tables and their sentinel rows."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine or create_engine(
        database_uri or get_database_config().uri, future=True
    )
    enable_foreign_keys(resolved_engine)
    _STATE.tables = create_all_tables(resolved_engine, schema, sentinel_id=sentinel_id)
    _STATE.sentinel_id = sentinel_id
    _STATE.engine = resolved_engine


def configured_engine() -> Engine | None:
    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None
    _STATE.tables = {}


class SqlAlchemyUnitOfWork:
    """One connection, one entity store; rolled back when the block raises."""

    def __init__(self) -> None:
        self._engine = _STATE.require_engine()
        self._tables = _STATE.tables
        self._sentinel_id = _STATE.sentinel_id
        self._connection: Connection | None = None
        self._store: SqlAlchemyEntityStore | None = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        if self._connection is not None:
            raise StartupError("Unit of work connection already open")
        connection = self._engine.connect()
        if connection.dialect.name == "sqlite":
            connection.exec_driver_sql("PRAGMA foreign_keys = ON")
            connection.commit()
        self._connection = connection
        self._store = SqlAlchemyEntityStore(connection, self._tables, sentinel_id=self._sentinel_id)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if self._connection is not None:
            if exc_type is not None:
                self._connection.rollback()
            self._connection.close()
        self._connection = None
        self._store = None
        return False

    @property
    def store(self) -> SqlAlchemyEntityStore:
        if self._store is None:
            raise StartupError("Unit of work connection not initialised")
        return self._store

    def commit(self) -> None:
        if self._connection is not None:
            self._connection.commit()

    def rollback(self) -> None:
        if self._connection is not None:
            self._connection.rollback()


if TYPE_CHECKING:
    from seedport.domain.ports import ImportUnitOfWork

    _uow_check: ImportUnitOfWork = SqlAlchemyUnitOfWork()
