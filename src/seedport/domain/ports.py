"""Ports the import engine depends on.

Storage, rule validation and media materialisation are collaborators; the
engine only talks to them through these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from seedport.domain.errors import (
    ClearBlockedError,
    ImportEngineError,
    InvalidSourceError,
    MediaFetchError,
    SourceNotFoundError,
    StoreError,
    UnknownEntityError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from contextlib import AbstractAsyncContextManager, AbstractContextManager
    from types import TracebackType

    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor

__all__ = [
    "ClearBlockedError",
    "EntityStore",
    "ImportEngineError",
    "ImportUnitOfWork",
    "InvalidSourceError",
    "MediaFetchError",
    "MediaRef",
    "MediaService",
    "RecordValidator",
    "RuleViolation",
    "SourceNotFoundError",
    "StoreError",
    "UnknownEntityError",
]


@runtime_checkable
class EntityStore(Protocol):
    """Row-level access to the tables of one schema.

    Every read excludes the sentinel row; every write raises ``StoreError`` on
    statement failure without aborting the surrounding transaction.
    """

    @property
    def sentinel_id(self) -> int: ...

    def select_rows(self, entity: EntityDescriptor, *, clean_only: bool = False) -> list[Record]:
        """Rows in id order; ``clean_only`` keeps ``_ql = 0`` rows only."""
        ...

    def get_row(self, entity: EntityDescriptor, row_id: int) -> Record | None: ...

    def count_rows(self, entity: EntityDescriptor) -> int: ...

    def find_id(self, entity: EntityDescriptor, values: Mapping[str, object]) -> int | None:
        """Id of the first row matching every column/value pair."""
        ...

    def count_where(self, entity: EntityDescriptor, column: str, value: object) -> int: ...

    def count_referencing(self, entity: EntityDescriptor, column: str) -> int:
        """Rows whose ``column`` points anywhere but at the sentinel."""
        ...

    def insert(self, entity: EntityDescriptor, values: Mapping[str, object]) -> int: ...

    def insert_or_replace(self, entity: EntityDescriptor, values: Mapping[str, object]) -> int: ...

    def update(
        self, entity: EntityDescriptor, row_id: int, values: Mapping[str, object]
    ) -> None: ...

    def delete_all(self, entity: EntityDescriptor) -> int:
        """Delete every row except the sentinel; return the number removed."""
        ...

    def transaction(self) -> AbstractContextManager[None]:
        """Commit on clean exit, roll back otherwise."""
        ...

    def reference_enforcement(self, *, enabled: bool) -> AbstractContextManager[None]:
        """Switch reference checking for the scope, restoring the previous state."""
        ...


@runtime_checkable
class ImportUnitOfWork(Protocol):
    @property
    def store(self) -> EntityStore: ...

    def __enter__(self) -> ImportUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(frozen=True, slots=True)
class RuleViolation:
    field: str
    message: str


@runtime_checkable
class RecordValidator(Protocol):
    """Field and object rule checks owned by the validation engine."""

    def validate_field_rules_only(
        self, entity_name: str, record: Mapping[str, object]
    ) -> list[RuleViolation]: ...

    def validate_object_rules_only(
        self, entity_name: str, record: Mapping[str, object]
    ) -> list[RuleViolation]: ...


@dataclass(frozen=True, slots=True)
class MediaRef:
    id: str


@runtime_checkable
class MediaService(Protocol):
    async def upload_from_url(
        self,
        url: str,
        context: str,
        constraints: Mapping[str, object] | None = None,
    ) -> MediaRef:
        """Fetch ``url`` and store it; raise ``MediaFetchError`` on failure."""
        ...

    def session(self) -> AbstractAsyncContextManager[object]:
        """Scope in which every upload shares one client and its rate limit."""
        ...
