"""Loading record files into storage.

Responsibilities of a single entity load, in order per record:

* materialise media URLs and flatten nested aggregates
* resolve label references to ids (:mod:`references`)
* accept or reject: quality mode scores deficits against ``accept_ql``,
  standard mode rejects rows breaking required fields or rules
* write according to the import mode and report everything that happened

Entities referencing themselves are loaded with reference enforcement switched
off; rows pointing at other rows of the same batch are written with the
sentinel as placeholder and repointed once the whole batch is stored.
"""

from __future__ import annotations

import json
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING

from seedport.config.importing import ImportLimits
from seedport.domain.errors import ClearBlockedError, ImportEngineError, StoreError
from seedport.domain.importing.labels import (
    LookupMap,
    build_label_lookup,
    build_lookup_from_batch,
    compute_label,
)
from seedport.domain.importing.media import flatten_aggregates, resolve_media_urls
from seedport.domain.importing.quality import assess_quality, neutralize
from seedport.domain.importing.references import find_by_unique_field, resolve_conceptual_fks
from seedport.domain.importing.results import BatchDuplicate, LoadFailure, LoadResult
from seedport.domain.importing.sources import has_source, read_records
from seedport.domain.importing.validation import (
    find_existing_by_unique,
    first_unique_value,
    validate_import,
)
from seedport.domain.records import is_empty
from seedport.domain.schema import ID_COLUMN, QD_COLUMN, QL_COLUMN, SYSTEM_COLUMNS

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from seedport.domain.importing.labels import LookupSet, PendingRow
    from seedport.domain.importing.references import ResolvedRecord, UniqueFinder
    from seedport.domain.importing.results import BatchOutcome
    from seedport.domain.ports import EntityStore, MediaService, RecordValidator
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor, Schema

log = logging.getLogger(__name__)


class ImportMode(StrEnum):
    REPLACE = "replace"
    MERGE = "merge"
    SKIP_CONFLICTS = "skip_conflicts"


@dataclass(frozen=True, slots=True, kw_only=True)
class LoadOptions:
    mode: ImportMode = ImportMode.REPLACE
    skip_invalid: bool = False
    validate_fields: bool = False
    validate_constraints: bool = True
    accept_ql: int = 0
    preserve_system_columns: bool = False

    @property
    def quality_mode(self) -> bool:
        return self.accept_ql > 0


@dataclass(slots=True, kw_only=True)
class LoadContext:
    """Collaborators shared by every load of one run."""

    store: EntityStore
    schema: Schema
    media_service: MediaService | None = None
    validator: RecordValidator | None = None
    limits: ImportLimits = field(default_factory=ImportLimits)
    seed_dir: Path | None = None


@dataclass(frozen=True, slots=True)
class _PendingReference:
    row: int
    stored_id: int
    column: str
    target: PendingRow


@dataclass(slots=True)
class _BatchState:
    entity: EntityDescriptor
    options: LoadOptions
    result: LoadResult
    lookups: LookupSet
    find_by_unique: UniqueFinder
    written: dict[int, int] = field(default_factory=dict)
    pending: list[_PendingReference] = field(default_factory=list)
    label_rows: dict[str, int] = field(default_factory=dict)


async def load_entity(
    context: LoadContext,
    entity_name: str,
    source_dir: Path,
    *,
    lookups: LookupSet | None = None,
    options: LoadOptions | None = None,
) -> LoadResult:
    """Load ``<entity_name>.json`` from ``source_dir``."""

    entity = context.schema.entity(entity_name)
    records = read_records(source_dir, entity.class_name)
    return await load_records(context, entity, records, lookups=lookups, options=options)


async def load_records(
    context: LoadContext,
    entity: EntityDescriptor,
    records: Sequence[Record],
    *,
    lookups: LookupSet | None = None,
    options: LoadOptions | None = None,
) -> LoadResult:
    options = options or LoadOptions()
    store = context.store
    result = LoadResult(entity=entity.class_name, limits=context.limits)

    invalid_rows = _prevalidate(context, entity, records, result) if options.skip_invalid else set()
    state = _BatchState(
        entity=entity,
        options=options,
        result=result,
        lookups=_prepare_lookups(context, entity, records, lookups, options.mode),
        find_by_unique=partial(find_by_unique_field, store),
    )

    with ExitStack() as stack:
        if entity.has_self_reference:
            stack.enter_context(store.reference_enforcement(enabled=False))
        stack.enter_context(store.transaction())
        count_before = store.count_rows(entity)

        for row, record in enumerate(records, start=1):
            if row in invalid_rows:
                result.skipped += 1
                continue
            await _load_record(context, state, row, record)

        _reconcile_pending(store, state)
        if options.mode is ImportMode.REPLACE:
            _account_replacements(result, store.count_rows(entity) - count_before)

    log.info(
        "Loaded %s: %d new, %d updated, %d skipped, %d replaced",
        entity.class_name,
        result.loaded,
        result.updated,
        result.skipped,
        result.replaced,
    )
    return result


def _prevalidate(
    context: LoadContext,
    entity: EntityDescriptor,
    records: Sequence[Record],
    result: LoadResult,
) -> set[int]:
    validation = validate_import(
        context.store, context.schema, entity, records, seed_dir=context.seed_dir
    )
    for warning in validation.warnings:
        if warning.row not in validation.invalid_rows:
            continue
        result.errors.add(f"Row {warning.row}: {warning.message}")
    return validation.invalid_rows


def _prepare_lookups(
    context: LoadContext,
    entity: EntityDescriptor,
    records: Sequence[Record],
    lookups: LookupSet | None,
    mode: ImportMode,
) -> LookupSet:
    """Lookups for every reference target; the caller's set is filled, not replaced.

    The entity's own lookup includes the batch in flight and is kept local so
    placeholder targets never leak into the caller's set. Replace mode writes
    batch rows under new ids, so there batch labels shadow stored ones.
    """

    shared = lookups if lookups is not None else {}
    working: LookupSet = {}
    for fk in entity.foreign_keys:
        target_name = entity.fk_target(fk)
        if target_name in working:
            continue
        if target_name == entity.class_name:
            stored = build_label_lookup(context.store, context.schema, entity)
            batch = build_lookup_from_batch(entity, records)
            working[target_name] = stored.overlay(batch, other_wins=mode is ImportMode.REPLACE)
            continue
        if target_name not in shared:
            target = context.schema.get(target_name)
            shared[target_name] = (
                build_label_lookup(context.store, context.schema, target)
                if target is not None
                else LookupMap()
            )
        working[target_name] = shared[target_name]
    return working


async def _load_record(
    context: LoadContext, state: _BatchState, row: int, record: Mapping[str, object]
) -> None:
    entity, options, result = state.entity, state.options, state.result
    store = context.store

    values: Record = dict(record)
    for media_error in await resolve_media_urls(entity, values, context.media_service, row):
        result.record_media_error(media_error)
    flatten_aggregates(entity, values)

    resolved = resolve_conceptual_fks(
        entity, values, state.lookups, context.schema, state.find_by_unique
    )
    for warning in resolved.warnings:
        result.record_reference_error(warning)
    for usage in resolved.fuzzy_matches:
        result.record_fuzzy_match(usage)
    values = resolved.values
    for column in resolved.pending:
        values[column] = store.sentinel_id
    _apply_defaults(entity, values)

    if options.quality_mode:
        quality = _accept_by_quality(context, state, row, resolved)
        if quality is None:
            return
        ql, qd = quality
    else:
        failures = _standard_failures(context, state, resolved)
        if failures:
            result.skipped += 1
            for failure in failures:
                result.errors.add(f"Row {row}: {failure}")
            return
        ql, qd = 0, None

    _track_duplicate(state, row, values)
    stored_id = _write(store, state, row, record, _storage_values(entity, values, options, ql, qd))
    if stored_id is None:
        return
    state.written[row] = stored_id
    state.pending.extend(
        _PendingReference(row=row, stored_id=stored_id, column=column, target=target)
        for column, target in resolved.pending.items()
    )


def _apply_defaults(entity: EntityDescriptor, values: Record) -> None:
    for column in entity.writable_columns():
        if column.name not in values and column.default is not None:
            values[column.name] = column.default


def _accept_by_quality(
    context: LoadContext, state: _BatchState, row: int, resolved: ResolvedRecord
) -> tuple[int, str | None] | None:
    entity, result, accept_ql = state.entity, state.result, state.options.accept_ql
    values = resolved.values
    for warning in resolved.warnings:
        if warning.required:
            values[warning.column] = context.store.sentinel_id

    assessment = assess_quality(entity, values, resolved.warnings, context.validator)
    if not assessment.accepted_by(accept_ql):
        result.quality_rejected += 1
        result.skipped += 1
        result.errors.add(f"Row {row}: quality {assessment.ql} exceeds accepted mask {accept_ql}")
        return None
    if assessment.ql:
        neutralize(entity, values, assessment, sentinel_id=context.store.sentinel_id)
        result.quality_accepted += 1
    return assessment.ql, assessment.qd_json()


def _standard_failures(
    context: LoadContext, state: _BatchState, resolved: ResolvedRecord
) -> list[str]:
    entity, options = state.entity, state.options
    values = resolved.values
    failures = [
        f"{warning.field}: {warning.message}" for warning in resolved.warnings if warning.required
    ]
    unresolved = resolved.unresolved_columns
    failures.extend(
        f"required field {column.name} is empty"
        for column in entity.writable_columns()
        if column.required
        and column.aggregate_source is None
        and column.name not in unresolved
        and is_empty(values.get(column.name))
    )
    validator = context.validator
    if validator is not None and options.validate_fields:
        failures.extend(
            f"{violation.field}: {violation.message}"
            for violation in validator.validate_field_rules_only(entity.class_name, values)
        )
    if validator is not None and options.validate_constraints:
        failures.extend(
            violation.message
            for violation in validator.validate_object_rules_only(entity.class_name, values)
        )
    return failures


def _track_duplicate(state: _BatchState, row: int, values: Mapping[str, object]) -> None:
    label_column = state.entity.label_column
    if label_column is None:
        return
    label = values.get(label_column)
    if is_empty(label):
        return
    first_row = state.label_rows.setdefault(str(label), row)
    if first_row != row:
        state.result.record_duplicate(
            BatchDuplicate(value=str(label), first_row=first_row, duplicate_row=row)
        )


def _to_storage(value: object) -> object:
    if isinstance(value, dict | list):
        return json.dumps(value, ensure_ascii=False)
    return value


def _storage_values(
    entity: EntityDescriptor,
    values: Mapping[str, object],
    options: LoadOptions,
    ql: int,
    qd: str | None,
) -> dict[str, object]:
    columns = entity.writable_columns(include_system=options.preserve_system_columns)
    row = {column.name: _to_storage(values.get(column.name)) for column in columns}
    if options.preserve_system_columns:
        for name in SYSTEM_COLUMNS:
            if name != ID_COLUMN and values.get(name) is not None:
                row[name] = _to_storage(values[name])
            elif row.get(name) is None:
                row.pop(name, None)
        row.setdefault(QL_COLUMN, 0)
    else:
        row[QL_COLUMN] = ql
        row[QD_COLUMN] = qd
    return row


def _update_key(
    entity: EntityDescriptor, record: Mapping[str, object], row: Mapping[str, object]
) -> str:
    if entity.label_column is not None and not is_empty(row.get(entity.label_column)):
        return str(row[entity.label_column])
    if entity.label_expression is not None:
        label = compute_label(entity.label_expression, record)
        if label:
            return label
    return str(first_unique_value(entity, row))


def _write(
    store: EntityStore,
    state: _BatchState,
    row: int,
    record: Mapping[str, object],
    values: dict[str, object],
) -> int | None:
    entity, result = state.entity, state.result
    try:
        match state.options.mode:
            case ImportMode.REPLACE:
                stored_id = store.insert_or_replace(entity, values)
                result.loaded += 1
            case ImportMode.MERGE:
                existing = find_existing_by_unique(store, entity, values)
                if existing is None:
                    stored_id = store.insert(entity, values)
                    result.loaded += 1
                else:
                    store.update(entity, existing, values)
                    result.updated += 1
                    result.record_updated_key(_update_key(entity, record, values))
                    stored_id = existing
            case ImportMode.SKIP_CONFLICTS:
                existing = find_existing_by_unique(store, entity, values)
                if existing is not None:
                    result.skipped += 1
                    state.written[row] = existing
                    return None
                stored_id = store.insert(entity, values)
                result.loaded += 1
    except StoreError as exc:
        log.warning("%s row %d not written: %s", entity.class_name, row, exc)
        result.skipped += 1
        result.store_errors.add(f"Row {row}: {exc}")
        return None
    return stored_id


def _reconcile_pending(store: EntityStore, state: _BatchState) -> None:
    """Point placeholder references at the real ids of the rows they named."""

    entity, result = state.entity, state.result
    for reference in state.pending:
        real_id = state.written.get(reference.target.index)
        if real_id is not None:
            changes: dict[str, object] = {reference.column: real_id}
        else:
            column = entity.column(reference.column)
            result.errors.add(
                f"Row {reference.row}: {reference.column} refers to row "
                f"{reference.target.index}, which was not loaded"
            )
            if column is not None and column.required:
                continue
            changes = {reference.column: None}
        try:
            store.update(entity, reference.stored_id, changes)
        except StoreError as exc:
            result.store_errors.add(f"Row {reference.row}: {exc}")


def _account_replacements(result: LoadResult, net_new: int) -> None:
    replaced = result.loaded - net_new
    if replaced <= 0:
        return
    result.replaced = replaced
    result.loaded = net_new
    message = f"{replaced} rows replaced existing rows (unique key collision)"
    result.warnings.append(message)
    log.warning("%s: %s", result.entity, message)


async def load_all(
    context: LoadContext,
    source_dir: Path,
    *,
    options: LoadOptions | None = None,
    source_label: str | None = None,
) -> BatchOutcome:
    """Load every entity with a source file, in dependency order, merging."""

    return await load_sources(
        context,
        {entity.class_name: (source_dir, source_label) for entity in context.schema},
        options or LoadOptions(mode=ImportMode.MERGE),
    )


async def import_all(
    context: LoadContext,
    import_dir: Path,
    seed_dir: Path,
    *,
    options: LoadOptions | None = None,
) -> BatchOutcome:
    """Like :func:`load_all`, preferring the import directory over seeds per entity."""

    sources: dict[str, tuple[Path, str | None]] = {}
    for entity in context.schema:
        if has_source(import_dir, entity.class_name):
            sources[entity.class_name] = (import_dir, "import")
        elif has_source(seed_dir, entity.class_name):
            sources[entity.class_name] = (seed_dir, "seed")
    return await load_sources(context, sources, options or LoadOptions(mode=ImportMode.MERGE))


async def load_sources(
    context: LoadContext,
    sources: Mapping[str, tuple[Path, str | None]],
    options: LoadOptions,
) -> BatchOutcome:
    """Load one source file per entity in dependency order.

    Each entity's lookup is rebuilt from storage right after it is loaded so
    later entities resolve against the freshly written rows.
    """

    lookups: LookupSet = {}
    outcome: BatchOutcome = {}
    for entity in context.schema:
        if entity.class_name not in sources:
            continue
        directory, label = sources[entity.class_name]
        if not has_source(directory, entity.class_name):
            continue
        try:
            result = await load_entity(
                context, entity.class_name, directory, lookups=lookups, options=options
            )
        except ImportEngineError as exc:
            log.error("Loading %s failed: %s", entity.class_name, exc)  # noqa: TRY400
            outcome[entity.class_name] = LoadFailure(entity=entity.class_name, error=str(exc))
        else:
            result.source = label
            outcome[entity.class_name] = result
        lookups[entity.class_name] = build_label_lookup(context.store, context.schema, entity)
    return outcome


def clear_entity(store: EntityStore, schema: Schema, entity_name: str) -> int:
    """Delete every row but the sentinel; refused while other entities point here."""

    entity = schema.entity(entity_name)
    referencing: dict[str, int] = {}
    for relation in schema.referencing(entity.class_name):
        if relation.entity == entity.class_name:
            continue
        source = schema.get(relation.entity)
        if source is None:
            continue
        count = store.count_referencing(source, relation.column)
        if count:
            referencing[relation.entity] = referencing.get(relation.entity, 0) + count
    if referencing:
        raise ClearBlockedError(entity.class_name, referencing)

    with ExitStack() as stack:
        if entity.has_self_reference:
            stack.enter_context(store.reference_enforcement(enabled=False))
        stack.enter_context(store.transaction())
        removed = store.delete_all(entity)
    log.info("Cleared %s: %d rows", entity.class_name, removed)
    return removed


def clear_all(store: EntityStore, schema: Schema) -> dict[str, int]:
    removed: dict[str, int] = {}
    with store.reference_enforcement(enabled=False), store.transaction():
        for entity in reversed(schema.ordered_entities):
            removed[entity.class_name] = store.delete_all(entity)
    log.info("Cleared %d entities", len(removed))
    return removed


async def reset_all(
    context: LoadContext, seed_dir: Path, *, options: LoadOptions | None = None
) -> BatchOutcome:
    clear_all(context.store, context.schema)
    return await load_all(context, seed_dir, options=options)
