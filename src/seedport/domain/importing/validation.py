"""Pre-flight checks for a batch of import records.

Nothing here writes. The checks answer three questions before a load:

1. does every reference resolve (against storage, or against a seed file that
   has not been loaded yet)?
2. would a record collide with an existing row that other rows depend on?
3. does the batch contradict itself (the same unique value twice)?
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING

from seedport.domain.importing.labels import (
    LookupMap,
    PendingRow,
    build_label_lookup,
    build_label_lookup_from_seed,
    build_lookup_from_batch,
)
from seedport.domain.importing.references import find_by_unique_field, resolve_conceptual_fks
from seedport.domain.importing.sources import read_records_if_present
from seedport.domain.records import is_empty

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence
    from pathlib import Path

    from seedport.domain.importing.labels import LookupSet
    from seedport.domain.ports import EntityStore
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor, Schema


class WarningKind(StrEnum):
    UNRESOLVED_REFERENCE = "unresolved_reference"
    BATCH_DUPLICATE = "batch_duplicate"


@dataclass(frozen=True, slots=True, kw_only=True)
class ValidationWarning:
    row: int
    field: str
    value: object
    message: str
    kind: WarningKind
    target_entity: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class UniqueConflict:
    row: int
    field: str
    value: object
    existing_id: int
    back_references: Mapping[str, int]

    @property
    def total_back_references(self) -> int:
        return sum(self.back_references.values())

    @property
    def message(self) -> str:
        return (
            f'"{self.value}" exists (id={self.existing_id}) '
            f"with {self.total_back_references} back-references"
        )


@dataclass(slots=True, kw_only=True)
class ImportValidation:
    record_count: int
    warnings: list[ValidationWarning] = field(default_factory=list)
    invalid_rows: set[int] = field(default_factory=set)
    conflicts: list[UniqueConflict] = field(default_factory=list)
    seed_fallbacks: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.warnings

    @property
    def valid_count(self) -> int:
        return self.record_count - len(self.invalid_rows)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> dict[str, object]:
        return {
            "valid": self.valid,
            "recordCount": self.record_count,
            "validCount": self.valid_count,
            "invalidRows": sorted(self.invalid_rows),
            "warnings": [
                {"row": w.row, "field": w.field, "value": w.value, "message": w.message}
                for w in self.warnings
            ],
            "conflicts": [
                {
                    "row": c.row,
                    "field": c.field,
                    "value": c.value,
                    "existingId": c.existing_id,
                    "backRefs": c.total_back_references,
                    "referencingEntities": dict(c.back_references),
                    "message": c.message,
                }
                for c in self.conflicts
            ],
            "hasConflicts": self.has_conflicts,
            "seedFallbacks": list(self.seed_fallbacks),
        }


@dataclass(frozen=True, slots=True)
class SeedConflictCount:
    db_row_count: int
    conflict_count: int

    def to_dict(self) -> dict[str, object]:
        return {"dbRowCount": self.db_row_count, "conflictCount": self.conflict_count}


@dataclass(slots=True, kw_only=True)
class EntityStatus:
    name: str
    table_name: str
    row_count: int
    seed_total: int | None
    seed_valid: int | None
    backup_total: int | None
    import_total: int | None
    import_valid: int | None
    dependencies: list[str] = field(default_factory=list)
    missing_dependencies: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return not self.missing_dependencies

    @property
    def has_pending_source(self) -> bool:
        return bool(self.seed_total)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "tableName": self.table_name,
            "rowCount": self.row_count,
            "seedTotal": self.seed_total,
            "seedValid": self.seed_valid,
            "backupTotal": self.backup_total,
            "importTotal": self.import_total,
            "importValid": self.import_valid,
            "dependencies": list(self.dependencies),
            "missingDeps": list(self.missing_dependencies),
            "ready": self.ready,
        }


def _present(value: object) -> bool:
    return not is_empty(value) and not isinstance(value, PendingRow)


def _unique_probes(
    entity: EntityDescriptor, values: Mapping[str, object]
) -> Iterator[tuple[str, dict[str, object]]]:
    """Yield ``(name, column values)`` for every uniqueness constraint the record fills."""

    for column in entity.unique_columns:
        if _present(values.get(column)):
            yield column, {column: values[column]}
    for name, columns in entity.unique_keys.items():
        if columns and all(_present(values.get(column)) for column in columns):
            yield name, {column: values[column] for column in columns}


def _describe(probe: Mapping[str, object]) -> object:
    if len(probe) == 1:
        return next(iter(probe.values()))
    return ", ".join(f"{column}={value}" for column, value in probe.items())


def find_existing_by_unique(
    store: EntityStore, entity: EntityDescriptor, values: Mapping[str, object]
) -> int | None:
    """Existing row sharing a unique value, composite key or (failing both) the label."""

    for _name, probe in _unique_probes(entity, values):
        found = store.find_id(entity, probe)
        if found is not None:
            return found
    if not entity.has_uniqueness and entity.label_column is not None:
        label = values.get(entity.label_column)
        if _present(label):
            return store.find_id(entity, {entity.label_column: label})
    return None


def first_unique_value(entity: EntityDescriptor, values: Mapping[str, object]) -> object:
    for column in entity.unique_columns:
        if values.get(column) is not None:
            return values[column]
    for columns in entity.composite_keys:
        joined = "-".join(str(values.get(column) or "") for column in columns)
        if joined.strip("-"):
            return joined
    return None


def count_back_references(
    store: EntityStore,
    schema: Schema,
    entity_name: str,
    row_id: int,
    *,
    include_self: bool = True,
) -> dict[str, int]:
    """Rows of other entities (and, unless excluded, the entity itself) pointing at a row."""

    counts: dict[str, int] = {}
    for relation in schema.referencing(entity_name):
        if not include_self and relation.entity == entity_name:
            continue
        referencing = schema.get(relation.entity)
        if referencing is None:
            continue
        count = store.count_where(referencing, relation.column, row_id)
        if count:
            counts[relation.entity] = counts.get(relation.entity, 0) + count
    return counts


def build_validation_lookups(
    store: EntityStore,
    schema: Schema,
    entity: EntityDescriptor,
    records: Sequence[Record],
    seed_dir: Path | None,
) -> tuple[LookupSet, list[str]]:
    lookups: LookupSet = {}
    fallbacks: list[str] = []
    for fk in entity.foreign_keys:
        target_name = entity.fk_target(fk)
        if target_name in lookups:
            continue
        target = schema.get(target_name)
        if target is None:
            lookups[target_name] = LookupMap()
            continue
        stored = build_label_lookup(store, schema, target)
        if target_name == entity.class_name:
            lookups[target_name] = stored.overlay(build_lookup_from_batch(entity, records))
        elif len(stored) or seed_dir is None:
            lookups[target_name] = stored
        else:
            seeded, found = build_label_lookup_from_seed(target, seed_dir)
            lookups[target_name] = seeded
            if found:
                fallbacks.append(target_name)
    return lookups, fallbacks


def validate_import(
    store: EntityStore,
    schema: Schema,
    entity: EntityDescriptor,
    records: Sequence[Record],
    *,
    seed_dir: Path | None = None,
) -> ImportValidation:
    lookups, fallbacks = build_validation_lookups(store, schema, entity, records, seed_dir)
    result = ImportValidation(record_count=len(records), seed_fallbacks=fallbacks)
    finder = partial(find_by_unique_field, store)
    seen: dict[str, dict[tuple[object, ...], int]] = {}

    for row, record in enumerate(records, start=1):
        resolved = resolve_conceptual_fks(entity, record, lookups, schema, finder)
        for warning in resolved.warnings:
            result.warnings.append(
                ValidationWarning(
                    row=row,
                    field=warning.field,
                    value=warning.value,
                    message=warning.message,
                    kind=WarningKind.UNRESOLVED_REFERENCE,
                    target_entity=warning.target_entity,
                )
            )
            if warning.required:
                result.invalid_rows.add(row)

        for name, probe in _unique_probes(entity, resolved.values):
            existing = store.find_id(entity, probe)
            if existing is not None:
                back_references = count_back_references(store, schema, entity.class_name, existing)
                if back_references:
                    result.conflicts.append(
                        UniqueConflict(
                            row=row,
                            field=name,
                            value=_describe(probe),
                            existing_id=existing,
                            back_references=back_references,
                        )
                    )

            key = tuple(str(value) for value in probe.values())
            first_row = seen.setdefault(name, {}).setdefault(key, row)
            if first_row != row:
                result.warnings.append(
                    ValidationWarning(
                        row=row,
                        field=name,
                        value=_describe(probe),
                        message=(
                            f'Duplicate "{_describe(probe)}" in batch, '
                            f"same value in row {first_row}"
                        ),
                        kind=WarningKind.BATCH_DUPLICATE,
                    )
                )
                result.invalid_rows.add(row)
    return result


def count_seed_conflicts(
    store: EntityStore, schema: Schema, entity: EntityDescriptor, source_dir: Path
) -> SeedConflictCount:
    """How many records of a source file would collide with rows already stored."""

    db_row_count = store.count_rows(entity)
    if db_row_count == 0:
        return SeedConflictCount(db_row_count=0, conflict_count=0)
    records = read_records_if_present(source_dir, entity.class_name)
    if not records:
        return SeedConflictCount(db_row_count=db_row_count, conflict_count=0)

    lookups: LookupSet = {}
    for target_name in {entity.fk_target(fk) for fk in entity.foreign_keys}:
        target = schema.get(target_name)
        lookups[target_name] = build_label_lookup(store, schema, target) if target else LookupMap()
    finder = partial(find_by_unique_field, store)
    conflicts = sum(
        1
        for record in records
        if find_existing_by_unique(
            store, entity, resolve_conceptual_fks(entity, record, lookups, schema, finder).values
        )
        is not None
    )
    return SeedConflictCount(db_row_count=db_row_count, conflict_count=conflicts)


def _count_and_validate(
    store: EntityStore,
    schema: Schema,
    entity: EntityDescriptor,
    directory: Path,
    seed_dir: Path,
) -> tuple[int | None, int | None]:
    records = read_records_if_present(directory, entity.class_name)
    if records is None:
        return None, None
    if not records:
        return 0, None
    validation = validate_import(store, schema, entity, records, seed_dir=seed_dir)
    return len(records), validation.valid_count


def get_status(
    store: EntityStore,
    schema: Schema,
    *,
    seed_dir: Path,
    import_dir: Path,
    backup_dir: Path,
) -> list[EntityStatus]:
    statuses: dict[str, EntityStatus] = {}
    for entity in schema:
        seed_total, seed_valid = _count_and_validate(store, schema, entity, seed_dir, seed_dir)
        import_total, import_valid = _count_and_validate(
            store, schema, entity, import_dir, seed_dir
        )
        backup = read_records_if_present(backup_dir, entity.class_name)
        statuses[entity.class_name] = EntityStatus(
            name=entity.class_name,
            table_name=entity.table_name,
            row_count=store.count_rows(entity),
            seed_total=seed_total,
            seed_valid=seed_valid,
            backup_total=None if backup is None else len(backup),
            import_total=import_total,
            import_valid=import_valid,
        )

    for entity in schema:
        status = statuses[entity.class_name]
        for dependency in entity.dependencies:
            status.dependencies.append(dependency)
            target = statuses.get(dependency)
            if target is not None and not target.row_count and not target.has_pending_source:
                status.missing_dependencies.append(dependency)
    return list(statuses.values())
