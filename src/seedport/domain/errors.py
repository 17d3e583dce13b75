"""Errors raised by the import engine."""

from __future__ import annotations


class ImportEngineError(RuntimeError):
    """Base class for failures of a commanded import operation."""


class UnknownEntityError(ImportEngineError):
    def __init__(self, entity_name: str) -> None:
        super().__init__(f"Unknown entity: {entity_name}")
        self.entity_name = entity_name


class SourceNotFoundError(ImportEngineError):
    """The commanded operation has no source file or directory to read."""


class InvalidSourceError(ImportEngineError):
    """A source file exists but does not hold a JSON array of records."""


class ClearBlockedError(ImportEngineError):
    """Rows cannot be cleared because other entities still reference the table."""

    def __init__(self, entity_name: str, referencing: dict[str, int]) -> None:
        details = ", ".join(f"{name} ({count})" for name, count in sorted(referencing.items()))
        super().__init__(f"Cannot clear {entity_name}: referenced by {details}")
        self.entity_name = entity_name
        self.referencing = referencing


class StoreError(ImportEngineError):
    """A storage statement failed; the loader treats this as a row-level failure."""


class MediaFetchError(ImportEngineError):
    """A media URL could not be materialised."""
