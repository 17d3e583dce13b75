from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from seedport.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, shutdown, startup
from seedport.domain.importing.loader import LoadContext
from tests.helpers.aviation import build_aviation_schema

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    from seedport.adapters.sqlalchemy.store import SqlAlchemyEntityStore
    from seedport.domain.schema import Schema


@pytest.fixture
def schema() -> Schema:
    return build_aviation_schema()


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(
    schema: Schema, sqlite_engine: Engine
) -> Iterator[Callable[[], SqlAlchemyUnitOfWork]]:
    startup(schema, engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def store(
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
) -> Iterator[SqlAlchemyEntityStore]:
    with sqlite_unit_of_work() as uow:
        yield uow.store


@pytest.fixture
def seed_dir(tmp_path: Path) -> Path:
    return tmp_path / "seed"


@pytest.fixture
def import_dir(tmp_path: Path) -> Path:
    return tmp_path / "import"


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "backup"


@pytest.fixture
def context(store: SqlAlchemyEntityStore, schema: Schema, seed_dir: Path) -> LoadContext:
    return LoadContext(store=store, schema=schema, seed_dir=seed_dir)
