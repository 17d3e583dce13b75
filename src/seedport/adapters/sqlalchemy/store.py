"""Entity store over a SQLAlchemy Core connection (SQLite)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from seedport.config.importing import DEFAULT_SENTINEL_ID
from seedport.domain.errors import StoreError
from seedport.domain.schema import ID_COLUMN, QL_COLUMN

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from sqlalchemy import Executable, Table
    from sqlalchemy.engine import Connection, CursorResult

    from seedport.adapters.sqlalchemy.tables import TableMap
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor

log = logging.getLogger(__name__)


class SqlAlchemyEntityStore:
    """Implements :class:`seedport.domain.ports.EntityStore`.

    Reads never return the sentinel row. A failing write raises ``StoreError``
    and leaves the surrounding transaction usable: SQLite undoes only the
    failed statement.
    """

    def __init__(
        self,
        connection: Connection,
        tables: TableMap,
        *,
        sentinel_id: int = DEFAULT_SENTINEL_ID,
    ) -> None:
        self._connection = connection
        self._tables = tables
        self._sentinel_id = sentinel_id

    @property
    def sentinel_id(self) -> int:
        return self._sentinel_id

    @property
    def connection(self) -> Connection:
        return self._connection

    def _table(self, entity: EntityDescriptor) -> Table:
        return self._tables[entity.table_name]

    def _values(self, table: Table, values: Mapping[str, object]) -> dict[str, object]:
        filtered = {key: value for key, value in values.items() if key in table.c}
        if filtered.get(ID_COLUMN) is None:
            filtered.pop(ID_COLUMN, None)
        return filtered

    def _execute(self, statement: Executable) -> CursorResult[object]:
        try:
            return self._connection.execute(statement)
        except SQLAlchemyError as exc:
            raise StoreError(str(getattr(exc, "orig", None) or exc)) from exc

    def select_rows(self, entity: EntityDescriptor, *, clean_only: bool = False) -> list[Record]:
        table = self._table(entity)
        statement = (
            select(table)
            .where(table.c[ID_COLUMN] != self._sentinel_id)
            .order_by(table.c[ID_COLUMN])
        )
        if clean_only:
            statement = statement.where(table.c[QL_COLUMN] == 0)
        return [dict(row._mapping) for row in self._connection.execute(statement)]  # noqa: SLF001

    def get_row(self, entity: EntityDescriptor, row_id: int) -> Record | None:
        table = self._table(entity)
        row = self._connection.execute(select(table).where(table.c[ID_COLUMN] == row_id)).first()
        return None if row is None else dict(row._mapping)  # noqa: SLF001

    def count_rows(self, entity: EntityDescriptor) -> int:
        table = self._table(entity)
        statement = (
            select(func.count()).select_from(table).where(table.c[ID_COLUMN] != self._sentinel_id)
        )
        return self._connection.execute(statement).scalar_one()

    def find_id(self, entity: EntityDescriptor, values: Mapping[str, object]) -> int | None:
        table = self._table(entity)
        if not values or any(column not in table.c for column in values):
            return None
        statement = (
            select(table.c[ID_COLUMN])
            .where(table.c[ID_COLUMN] != self._sentinel_id)
            .where(*(table.c[column] == value for column, value in values.items()))
            .order_by(table.c[ID_COLUMN])
            .limit(1)
        )
        return self._connection.execute(statement).scalar_one_or_none()

    def count_where(self, entity: EntityDescriptor, column: str, value: object) -> int:
        table = self._table(entity)
        statement = (
            select(func.count())
            .select_from(table)
            .where(table.c[ID_COLUMN] != self._sentinel_id)
            .where(table.c[column] == value)
        )
        return self._connection.execute(statement).scalar_one()

    def count_referencing(self, entity: EntityDescriptor, column: str) -> int:
        table = self._table(entity)
        statement = (
            select(func.count())
            .select_from(table)
            .where(table.c[ID_COLUMN] != self._sentinel_id)
            .where(table.c[column].is_not(None))
            .where(table.c[column] != self._sentinel_id)
        )
        return self._connection.execute(statement).scalar_one()

    def insert(self, entity: EntityDescriptor, values: Mapping[str, object]) -> int:
        table = self._table(entity)
        result = self._execute(insert(table).values(self._values(table, values)))
        return result.inserted_primary_key[0]

    def insert_or_replace(self, entity: EntityDescriptor, values: Mapping[str, object]) -> int:
        table = self._table(entity)
        statement = insert(table).prefix_with("OR REPLACE").values(self._values(table, values))
        return self._execute(statement).inserted_primary_key[0]

    def update(self, entity: EntityDescriptor, row_id: int, values: Mapping[str, object]) -> None:
        table = self._table(entity)
        changes = self._values(table, values)
        changes.pop(ID_COLUMN, None)
        if not changes:
            return
        self._execute(update(table).where(table.c[ID_COLUMN] == row_id).values(changes))

    def delete_all(self, entity: EntityDescriptor) -> int:
        table = self._table(entity)
        result = self._execute(delete(table).where(table.c[ID_COLUMN] != self._sentinel_id))
        return result.rowcount

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except BaseException:
            self._connection.rollback()
            raise
        self._connection.commit()

    def foreign_keys_enabled(self) -> bool:
        return bool(self._connection.exec_driver_sql("PRAGMA foreign_keys").scalar())

    @contextmanager
    def reference_enforcement(self, *, enabled: bool) -> Iterator[None]:
        """Switch SQLite reference checking for the scope.

        SQLite ignores the pragma inside an open transaction, so pending work is
        committed before each switch. The previous setting is restored on every
        exit path, which makes nested scopes safe.
        """

        previous = self.foreign_keys_enabled()
        self._set_foreign_keys(enabled=enabled)
        try:
            yield
        finally:
            self._set_foreign_keys(enabled=previous)

    def _set_foreign_keys(self, *, enabled: bool) -> None:
        if self._connection.in_transaction():
            self._connection.commit()
        self._connection.exec_driver_sql(f"PRAGMA foreign_keys = {'ON' if enabled else 'OFF'}")
        log.debug("Reference enforcement %s", "on" if enabled else "off")
