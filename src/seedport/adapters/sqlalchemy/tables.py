"""SQLAlchemy Core tables built from entity descriptors."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, TypeAlias

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
    insert,
    select,
    text,
)

from seedport.config.importing import DEFAULT_SENTINEL_ID
from seedport.domain.importing.quality import build_sentinel_record
from seedport.domain.schema import ID_COLUMN, QD_COLUMN, QL_COLUMN, SYSTEM_COLUMNS

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine
    from sqlalchemy.types import TypeEngine

    from seedport.domain.schema import Column as EntityColumn
    from seedport.domain.schema import EntityDescriptor, Schema

NAMING_CONVENTION: Final[dict[str, str]] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

_TYPES: Final[dict[str, type[TypeEngine[object]]]] = {
    "int": Integer,
    "integer": Integer,
    "number": Float,
    "real": Float,
    "float": Float,
    "bool": Boolean,
    "boolean": Boolean,
    "geo": Float,
    "json": Text,
    "text": Text,
}

TableMap: TypeAlias = "dict[str, Table]"


def _column_type(column: EntityColumn) -> TypeEngine[object]:
    kind = column.custom_type if column.custom_type in _TYPES else column.type
    return _TYPES.get(kind, String)()


def _system_columns() -> list[Column[object]]:
    return [
        Column(QL_COLUMN, Integer, nullable=False, server_default=text("0")),
        Column(QD_COLUMN, Text, nullable=True),
        Column("_created_at", String, server_default=text("CURRENT_TIMESTAMP")),
        Column("_updated_at", String, server_default=text("CURRENT_TIMESTAMP")),
        Column("_version", Integer, nullable=False, server_default=text("1")),
    ]


def _entity_table(entity: EntityDescriptor, schema: Schema, metadata: MetaData) -> Table:
    columns: list[Column[object]] = [Column(ID_COLUMN, Integer, primary_key=True)]
    for column in entity.columns:
        if column.name in SYSTEM_COLUMNS or column.system:
            continue
        fk = entity.foreign_key_for(column.name)
        constraints = []
        if fk is not None:
            target = schema.get(entity.fk_target(fk))
            if target is not None:
                constraints.append(ForeignKey(f"{target.table_name}.{ID_COLUMN}"))
        columns.append(
            Column(
                column.name,
                Integer if fk is not None else _column_type(column),
                *constraints,
                nullable=not column.required,
                unique=column.unique,
            )
        )
    columns.extend(_system_columns())
    composite = [
        UniqueConstraint(*key_columns, name=f"uq_{entity.table_name}_{name}")
        for name, key_columns in entity.unique_keys.items()
        if key_columns
    ]
    return Table(entity.table_name, metadata, *columns, *composite)


def build_tables(schema: Schema) -> tuple[MetaData, TableMap]:
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
    tables = {entity.table_name: _entity_table(entity, schema, metadata) for entity in schema}
    return metadata, tables


def enable_foreign_keys(engine: Engine) -> None:
    """Turn on SQLite reference checking for every new DBAPI connection."""

    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: object, _record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()


def ensure_sentinels(
    connection: Connection,
    schema: Schema,
    tables: TableMap,
    *,
    sentinel_id: int = DEFAULT_SENTINEL_ID,
) -> int:
    """Insert the reserved neutral row into every table lacking it, in dependency order."""

    created = 0
    for entity in schema:
        table = tables[entity.table_name]
        exists = connection.execute(
            select(table.c[ID_COLUMN]).where(table.c[ID_COLUMN] == sentinel_id)
        ).first()
        if exists is not None:
            continue
        record = build_sentinel_record(entity, sentinel_id=sentinel_id)
        connection.execute(insert(table).values({k: v for k, v in record.items() if k in table.c}))
        created += 1
    return created


def create_all_tables(
    engine: Engine, schema: Schema, *, sentinel_id: int = DEFAULT_SENTINEL_ID
) -> TableMap:
    metadata, tables = build_tables(schema)
    metadata.create_all(engine)
    with engine.begin() as connection:
        ensure_sentinels(connection, schema, tables, sentinel_id=sentinel_id)
    return tables
