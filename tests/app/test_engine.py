from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from seedport.app import ImportEngine
from seedport.config.importing import ImportConfig
from seedport.config.storage import StorageConfig
from seedport.domain.errors import ClearBlockedError, SourceNotFoundError
from seedport.domain.importing.loader import ImportMode
from seedport.domain.importing.results import LoadResult
from seedport.domain.importing.sources import write_records
from tests.helpers.aviation import AIRCRAFT_TYPES, OPERATORS, FakeMediaService

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from seedport.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from seedport.domain.schema import Schema


@pytest.fixture
def engine(
    schema: Schema,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    tmp_path: Path,
) -> ImportEngine:
    return ImportEngine(
        schema=schema,
        storage=StorageConfig(data_dir=tmp_path / "data"),
        unit_of_work_factory=sqlite_unit_of_work,
    )


def _aircraft() -> list[dict[str, object]]:
    return [
        {"registration": "D-AIUA", "operator": "Lufthansa", "type": "Airbus A320 neo"},
        {"registration": "HB-JCA", "operator": "Swiss", "seats": 125},
    ]


def test_options_use_configured_quality_mask(engine: ImportEngine) -> None:
    engine.config = ImportConfig(accept_ql=0b1000)

    options = engine.options(mode=ImportMode.MERGE, skip_invalid=True)

    assert options.accept_ql == 0b1000
    assert options.mode is ImportMode.MERGE
    assert options.skip_invalid
    assert engine.options(accept_ql=0).accept_ql == 0


def test_upload_then_load_entity(engine: ImportEngine) -> None:
    upload = engine.upload_entity("Operator", json.dumps(OPERATORS))

    result = engine.load_entity("Operator")

    assert upload.uploaded == 3
    assert result.loaded == 3
    statuses = {status.name: status for status in engine.get_status()}
    assert statuses["Operator"].row_count == 3


def test_load_entity_without_source_raises(engine: ImportEngine) -> None:
    with pytest.raises(SourceNotFoundError):
        engine.load_entity("Airport")


def test_load_all_and_clear(engine: ImportEngine) -> None:
    engine.upload_entity("Operator", OPERATORS)
    engine.upload_entity("AircraftType", AIRCRAFT_TYPES)
    engine.upload_entity("Aircraft", _aircraft())

    outcome = engine.load_all()

    assert list(outcome) == ["Operator", "AircraftType", "Aircraft"]
    aircraft = outcome["Aircraft"]
    assert isinstance(aircraft, LoadResult)
    assert aircraft.loaded == 2
    assert aircraft.source == "seed"

    with pytest.raises(ClearBlockedError):
        engine.clear_entity("Operator")
    assert engine.clear_entity("Aircraft") == 2
    assert engine.clear_all()["Operator"] == 3


def test_import_all_prefers_import_files(engine: ImportEngine) -> None:
    engine.upload_entity("Operator", OPERATORS)
    write_records(engine.storage.import_dir, "Operator", [{"name": "Edelweiss"}])

    outcome = engine.import_all()

    operator = outcome["Operator"]
    assert isinstance(operator, LoadResult)
    assert operator.source == "import"
    assert operator.loaded == 1


def test_reset_all_reloads_seeds(engine: ImportEngine) -> None:
    engine.upload_entity("Operator", OPERATORS)
    engine.load_all()

    outcome = engine.reset_all()

    operator = outcome["Operator"]
    assert isinstance(operator, LoadResult)
    assert operator.loaded == 3
    assert operator.updated == 0


def test_backup_and_restore(engine: ImportEngine) -> None:
    engine.upload_entity("Operator", OPERATORS)
    engine.upload_entity("Aircraft", _aircraft()[1:])
    engine.load_all()

    backup = engine.backup_all()
    engine.clear_all()
    restored = engine.restore_backup()
    single = engine.restore_entity("Aircraft")

    assert backup.entities == {"Operator": 3, "Aircraft": 1}
    assert set(restored) == {"Operator", "Aircraft"}
    assert single.loaded == 1
    statuses = {status.name: status for status in engine.get_status()}
    assert statuses["Aircraft"].row_count == 1
    assert statuses["Operator"].backup_total == 3


def test_validate_and_count_conflicts(engine: ImportEngine) -> None:
    engine.upload_entity("Operator", OPERATORS)
    engine.load_entity("Operator")

    validation = engine.validate_import("Aircraft", _aircraft())
    conflicts = engine.count_seed_conflicts("Operator")

    assert validation.invalid_rows == set()
    assert [warning.field for warning in validation.warnings] == ["type"]
    assert conflicts.conflict_count == 3


def test_reset_all_applies_configured_quality_mask(engine: ImportEngine) -> None:
    engine.config = ImportConfig(accept_ql=0b1000)
    engine.upload_entity("Operator", OPERATORS)
    engine.upload_entity("Aircraft", [{"registration": "D-AIUX", "operator": "Ghost Air"}])

    outcome = engine.reset_all()

    aircraft = outcome["Aircraft"]
    assert isinstance(aircraft, LoadResult)
    assert (aircraft.loaded, aircraft.quality_accepted) == (1, 1)


def test_operations_share_one_media_session(
    schema: Schema,
    sqlite_unit_of_work: Callable[[], SqlAlchemyUnitOfWork],
    tmp_path: Path,
) -> None:
    media = FakeMediaService()
    engine = ImportEngine(
        schema=schema,
        storage=StorageConfig(data_dir=tmp_path / "data"),
        unit_of_work_factory=sqlite_unit_of_work,
        media_service=media,
    )
    engine.upload_entity("Operator", OPERATORS)
    engine.upload_entity(
        "Aircraft",
        [
            {"registration": "D-AIUA", "operator": "Swiss", "photo": "https://example.org/a.jpg"},
            {"registration": "D-AIUB", "operator": "Swiss", "photo": "https://example.org/b.jpg"},
        ],
    )

    outcome = engine.load_all()

    aircraft = outcome["Aircraft"]
    assert isinstance(aircraft, LoadResult)
    assert aircraft.loaded == 2
    assert len(media.calls) == 2
    assert media.sessions == 1
