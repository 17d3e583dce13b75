"""Portable backups and seed uploads.

A backup is one JSON file per entity in the same shape an import accepts:
references are written as the target's label rather than its id, computed
columns and ids are dropped and aggregates are nested again. Restoring a
backup is therefore just a load in ``replace`` mode that keeps the stored
quality columns; ids may be renumbered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from seedport.domain.importing.labels import build_reverse_lookup
from seedport.domain.importing.loader import (
    ImportMode,
    LoadOptions,
    load_records,
    load_sources,
)
from seedport.domain.importing.media import nest_aggregates
from seedport.domain.importing.sources import (
    has_source,
    parse_records,
    read_records,
    remove_source,
    write_records,
)
from seedport.domain.importing.validation import first_unique_value
from seedport.domain.schema import ID_COLUMN

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from seedport.domain.importing.loader import LoadContext
    from seedport.domain.importing.results import BatchOutcome, LoadResult
    from seedport.domain.ports import EntityStore
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor, Schema

log = logging.getLogger(__name__)

RESTORE_OPTIONS = LoadOptions(mode=ImportMode.REPLACE, preserve_system_columns=True)


@dataclass(slots=True, kw_only=True)
class BackupResult:
    backup_dir: Path
    entities: dict[str, int] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "backupDir": str(self.backup_dir),
            "entities": dict(self.entities),
            "removed": list(self.removed),
        }


@dataclass(frozen=True, slots=True)
class UploadResult:
    entity: str
    uploaded: int
    file: Path

    def to_dict(self) -> dict[str, object]:
        return {"entity": self.entity, "uploaded": self.uploaded, "file": str(self.file)}


def upload_entity(
    schema: Schema, entity_name: str, seed_dir: Path, data: str | Sequence[Record]
) -> UploadResult:
    """Store records (JSON text or already parsed) as the entity's seed file."""

    entity = schema.entity(entity_name)
    records = parse_records(data, origin=entity.class_name) if isinstance(data, str) else list(data)
    path = write_records(seed_dir, entity.class_name, records)
    log.info("Uploaded %d %s records to %s", len(records), entity.class_name, path)
    return UploadResult(entity=entity.class_name, uploaded=len(records), file=path)


class _ReferenceLabels:
    """Reverse lookups per target entity, built on first use."""

    def __init__(self, store: EntityStore, schema: Schema) -> None:
        self._store = store
        self._schema = schema
        self._maps: dict[str, dict[int, str]] = {}

    def label(self, target: EntityDescriptor, row_id: int) -> str | None:
        reverse = self._maps.get(target.class_name)
        if reverse is None:
            reverse = build_reverse_lookup(self._store, self._schema, target)
            self._maps[target.class_name] = reverse
        found = reverse.get(row_id)
        if found is not None:
            return found
        target_row = self._store.get_row(target, row_id)
        fallback = first_unique_value(target, target_row) if target_row is not None else None
        return None if fallback is None else str(fallback)


def export_rows(
    store: EntityStore, schema: Schema, entity: EntityDescriptor, labels: _ReferenceLabels
) -> list[Record]:
    fk_columns = {fk.column for fk in entity.foreign_keys}
    computed = {c.name for c in entity.columns if c.computed and c.name not in fk_columns}
    exported_rows: list[Record] = []
    for row in store.select_rows(entity, clean_only=True):
        exported = {k: v for k, v in row.items() if k != ID_COLUMN and k not in computed}
        for fk in entity.foreign_keys:
            target_id = exported.pop(fk.column, None)
            if target_id is None:
                continue
            target = schema.get(entity.fk_target(fk))
            label = labels.label(target, target_id) if target is not None else None
            if label is None:
                log.warning(
                    "%s row %s: no label for %s id %s, reference omitted",
                    entity.class_name,
                    row.get(ID_COLUMN),
                    entity.fk_target(fk),
                    target_id,
                )
                continue
            exported[fk.display_name] = label
        exported_rows.append(nest_aggregates(entity, exported))
    return exported_rows


def backup_all(store: EntityStore, schema: Schema, backup_dir: Path) -> BackupResult:
    """Write every entity's clean rows; drop stale files of now-empty entities."""

    result = BackupResult(backup_dir=backup_dir)
    labels = _ReferenceLabels(store, schema)
    for entity in schema:
        rows = export_rows(store, schema, entity, labels)
        if rows:
            write_records(backup_dir, entity.class_name, rows)
            result.entities[entity.class_name] = len(rows)
        elif remove_source(backup_dir, entity.class_name):
            result.removed.append(entity.class_name)
    log.info("Backed up %d entities to %s", len(result.entities), backup_dir)
    return result


async def restore_entity(context: LoadContext, entity_name: str, backup_dir: Path) -> LoadResult:
    entity = context.schema.entity(entity_name)
    records = read_records(backup_dir, entity.class_name)
    store = context.store
    with store.reference_enforcement(enabled=False), store.transaction():
        store.delete_all(entity)
    return await load_records(context, entity, records, options=RESTORE_OPTIONS)


async def restore_backup(context: LoadContext, backup_dir: Path) -> BatchOutcome:
    """Replace the content of every entity that has a backup file."""

    store, schema = context.store, context.schema
    present = [e for e in schema if has_source(backup_dir, e.class_name)]
    with store.reference_enforcement(enabled=False), store.transaction():
        for entity in reversed(present):
            store.delete_all(entity)
    return await load_sources(
        context,
        {entity.class_name: (backup_dir, "backup") for entity in present},
        RESTORE_OPTIONS,
    )
