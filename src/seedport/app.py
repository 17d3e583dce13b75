"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from logging import getLogger
from typing import TYPE_CHECKING, TypeVar

from seedport.adapters.media import HttpMediaService
from seedport.adapters.schema_document import load_schema_document
from seedport.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, is_started, startup
from seedport.config.importing import ImportConfig, get_import_config, get_schema_path
from seedport.config.media import get_media_config
from seedport.config.storage import get_database_config, get_storage_config
from seedport.domain.importing import backup, loader, validation
from seedport.domain.importing.loader import ImportMode, LoadContext, LoadOptions
from seedport.domain.ports import ImportUnitOfWork

if TYPE_CHECKING:
    from collections.abc import Coroutine, Sequence
    from pathlib import Path

    from seedport.config.storage import StorageConfig
    from seedport.domain.importing.backup import BackupResult, UploadResult
    from seedport.domain.importing.results import BatchOutcome, LoadResult
    from seedport.domain.importing.validation import (
        EntityStatus,
        ImportValidation,
        SeedConflictCount,
    )
    from seedport.domain.ports import EntityStore, MediaService, RecordValidator
    from seedport.domain.records import Record
    from seedport.domain.schema import Schema

UnitOfWorkFactory = Callable[[], ImportUnitOfWork]

T = TypeVar("T")

log = getLogger(__name__)


@dataclass(slots=True, kw_only=True)
class ImportEngine:
    """Synchronous facade over the import engine for one schema and data directory.

    Every call opens its own unit of work; async loads run to completion through
    ``asyncio.run`` so callers never deal with an event loop.
    """

    schema: Schema
    storage: StorageConfig
    unit_of_work_factory: UnitOfWorkFactory = SqlAlchemyUnitOfWork
    media_service: MediaService | None = None
    validator: RecordValidator | None = None
    config: ImportConfig = field(default_factory=ImportConfig)

    def options(self, *, mode: ImportMode = ImportMode.REPLACE, **overrides: object) -> LoadOptions:
        """Load options with the configured quality mask unless overridden."""

        base = LoadOptions(mode=mode, accept_ql=self.config.accept_ql)
        return replace(base, **overrides) if overrides else base

    def _context(self, store: EntityStore) -> LoadContext:
        return LoadContext(
            store=store,
            schema=self.schema,
            media_service=self.media_service,
            validator=self.validator,
            limits=self.config.limits,
            seed_dir=self.storage.seed_dir,
        )

    def _run(self, operation: Callable[[LoadContext], Coroutine[object, object, T]]) -> T:
        media_service = self.media_service

        async def run_in_media_session(context: LoadContext) -> T:
            if media_service is None:
                return await operation(context)
            async with media_service.session():
                return await operation(context)

        with self.unit_of_work_factory() as uow:
            return asyncio.run(run_in_media_session(self._context(uow.store)))

    def load_entity(
        self,
        entity_name: str,
        *,
        source_dir: Path | None = None,
        options: LoadOptions | None = None,
    ) -> LoadResult:
        directory = source_dir or self.storage.seed_dir
        effective = options or self.options()
        return self._run(
            lambda context: loader.load_entity(context, entity_name, directory, options=effective)
        )

    def clear_entity(self, entity_name: str) -> int:
        with self.unit_of_work_factory() as uow:
            return loader.clear_entity(uow.store, self.schema, entity_name)

    def load_all(self, *, options: LoadOptions | None = None) -> BatchOutcome:
        effective = options or self.options(mode=ImportMode.MERGE)
        seed_dir = self.storage.seed_dir
        return self._run(
            lambda context: loader.load_all(
                context, seed_dir, options=effective, source_label="seed"
            )
        )

    def import_all(self, *, options: LoadOptions | None = None) -> BatchOutcome:
        effective = options or self.options(mode=ImportMode.MERGE)
        import_dir, seed_dir = self.storage.import_dir, self.storage.seed_dir
        return self._run(
            lambda context: loader.import_all(context, import_dir, seed_dir, options=effective)
        )

    def clear_all(self) -> dict[str, int]:
        with self.unit_of_work_factory() as uow:
            return loader.clear_all(uow.store, self.schema)

    def reset_all(self) -> BatchOutcome:
        seed_dir = self.storage.seed_dir
        effective = self.options(mode=ImportMode.MERGE)
        return self._run(lambda context: loader.reset_all(context, seed_dir, options=effective))

    def upload_entity(self, entity_name: str, data: str | Sequence[Record]) -> UploadResult:
        return backup.upload_entity(self.schema, entity_name, self.storage.seed_dir, data)

    def backup_all(self) -> BackupResult:
        with self.unit_of_work_factory() as uow:
            return backup.backup_all(uow.store, self.schema, self.storage.backup_dir)

    def restore_entity(self, entity_name: str) -> LoadResult:
        backup_dir = self.storage.backup_dir
        return self._run(lambda context: backup.restore_entity(context, entity_name, backup_dir))

    def restore_backup(self) -> BatchOutcome:
        backup_dir = self.storage.backup_dir
        return self._run(lambda context: backup.restore_backup(context, backup_dir))

    def count_seed_conflicts(self, entity_name: str) -> SeedConflictCount:
        entity = self.schema.entity(entity_name)
        with self.unit_of_work_factory() as uow:
            return validation.count_seed_conflicts(
                uow.store, self.schema, entity, self.storage.seed_dir
            )

    def get_status(self) -> list[EntityStatus]:
        with self.unit_of_work_factory() as uow:
            return validation.get_status(
                uow.store,
                self.schema,
                seed_dir=self.storage.seed_dir,
                import_dir=self.storage.import_dir,
                backup_dir=self.storage.backup_dir,
            )

    def validate_import(self, entity_name: str, records: Sequence[Record]) -> ImportValidation:
        entity = self.schema.entity(entity_name)
        with self.unit_of_work_factory() as uow:
            return validation.validate_import(
                uow.store, self.schema, entity, records, seed_dir=self.storage.seed_dir
            )


def build_engine(
    *,
    schema_path: Path | None = None,
    data_dir: Path | None = None,
    with_media: bool = True,
) -> ImportEngine:
    """Wire an :class:`ImportEngine` from configuration and start the storage adapter."""

    schema = load_schema_document(get_schema_path(schema_path))
    storage = get_storage_config(data_dir)
    import_config = get_import_config()
    if not is_started():
        startup(
            schema,
            database_uri=get_database_config(storage=storage).uri,
            sentinel_id=import_config.sentinel_id,
        )
    media_service = HttpMediaService(get_media_config(storage=storage)) if with_media else None
    log.info(
        "Import engine ready: %d entities, data dir %s",
        len(schema.ordered_entities),
        storage.resolve_data_dir(),
    )
    return ImportEngine(
        schema=schema,
        storage=storage,
        media_service=media_service,
        config=import_config,
    )
