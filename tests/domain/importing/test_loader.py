from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest

from seedport.domain.errors import ClearBlockedError, SourceNotFoundError
from seedport.domain.importing.loader import (
    ImportMode,
    LoadContext,
    LoadOptions,
    clear_all,
    clear_entity,
    import_all,
    load_all,
    load_entity,
    load_records,
    reset_all,
)
from seedport.domain.importing.results import LoadFailure, LoadResult
from seedport.domain.importing.sources import write_records
from tests.helpers.aviation import (
    AIRCRAFT_TYPES,
    ENGINE_TYPES,
    OPERATORS,
    FakeMediaService,
    FakeRuleValidator,
    seats_must_be_positive,
)

if TYPE_CHECKING:
    from pathlib import Path

    from seedport.adapters.sqlalchemy.store import SqlAlchemyEntityStore
    from seedport.domain.records import Record
    from seedport.domain.schema import Schema


def _load(
    context: LoadContext,
    entity_name: str,
    records: list[Record],
    **options: object,
) -> LoadResult:
    entity = context.schema.entity(entity_name)
    load_options = LoadOptions(**options)  # type: ignore[arg-type]
    return asyncio.run(load_records(context, entity, records, options=load_options))


def _rows_by(
    store: SqlAlchemyEntityStore, schema: Schema, entity_name: str, key: str
) -> dict[object, Record]:
    return {row[key]: row for row in store.select_rows(schema.entity(entity_name))}


def _seed_reference_data(context: LoadContext) -> None:
    _load(context, "Operator", list(OPERATORS))
    _load(context, "AircraftType", list(AIRCRAFT_TYPES))


def test_replace_mode_inserts_rows(context: LoadContext, store: SqlAlchemyEntityStore) -> None:
    result = _load(context, "Operator", list(OPERATORS))

    assert (result.loaded, result.replaced, result.skipped) == (3, 0, 0)
    assert result.warnings == []
    assert store.count_rows(context.schema.entity("Operator")) == 3


def test_replace_mode_reports_replaced_rows(context: LoadContext) -> None:
    _load(context, "Operator", list(OPERATORS))

    result = _load(context, "Operator", list(OPERATORS))

    assert result.loaded == 0
    assert result.replaced == 3
    assert result.warnings == ["3 rows replaced existing rows (unique key collision)"]


def test_merge_mode_updates_matching_rows(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _load(context, "Operator", list(OPERATORS))

    result = _load(
        context,
        "Operator",
        [{"name": "Lufthansa", "country": "Germany"}, {"name": "Eurowings", "country": "DE"}],
        mode=ImportMode.MERGE,
    )

    assert (result.loaded, result.updated) == (1, 1)
    assert [(entry.key, entry.count) for entry in result.updated_keys] == [("Lufthansa", 1)]
    operators = _rows_by(store, context.schema, "Operator", "name")
    assert operators["Lufthansa"]["country"] == "Germany"
    assert len(operators) == 4


def test_skip_conflicts_mode_keeps_existing_rows(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _load(context, "Operator", list(OPERATORS))

    result = _load(
        context,
        "Operator",
        [{"name": "Swiss", "country": "XX"}, {"name": "Edelweiss", "country": "CH"}],
        mode=ImportMode.SKIP_CONFLICTS,
    )

    assert (result.loaded, result.skipped) == (1, 1)
    assert _rows_by(store, context.schema, "Operator", "name")["Swiss"]["country"] == "CH"


def test_references_resolve_by_label_and_fuzzy_match(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _seed_reference_data(context)
    schema = context.schema

    result = _load(
        context,
        "Aircraft",
        [
            {"registration": "D-AIUA", "operator": "Lufthansa", "type": "Boeing 800", "seats": 180},
            {"registration": "D-AIUB", "operator": "Ghost Air"},
            {"registration": "D-ABOK", "operator": "Condor", "type": "Boeing 737"},
        ],
    )

    assert (result.loaded, result.skipped) == (2, 1)
    assert result.errors.messages == ['Row 2: operator: "Ghost Air" not found in Operator']
    assert {summary.value for summary in result.reference_errors} == {"Ghost Air", "Boeing 737"}
    assert result.fuzzy_match_total == 1
    assert result.fuzzy_matches[0].matched_label == "Boeing 737 800"

    aircraft = _rows_by(store, schema, "Aircraft", "registration")
    boeing_800 = store.find_id(
        schema.entity("AircraftType"), {"manufacturer": "Boeing", "model": "737", "variant": "800"}
    )
    condor = store.find_id(schema.entity("Operator"), {"name": "Condor"})
    assert aircraft["D-AIUA"]["type_id"] == boeing_800
    assert aircraft["D-AIUA"]["seats"] == 180
    assert aircraft["D-ABOK"]["operator_id"] == condor
    assert aircraft["D-ABOK"]["type_id"] is None
    assert aircraft["D-ABOK"]["seats"] == 0
    assert aircraft["D-ABOK"]["_ql"] == 0


def test_quality_mode_admits_flagged_rows(store: SqlAlchemyEntityStore, schema: Schema) -> None:
    validator = FakeRuleValidator(field_rules=seats_must_be_positive)
    context = LoadContext(store=store, schema=schema, validator=validator)
    _seed_reference_data(context)

    result = _load(
        context,
        "Aircraft",
        [
            {"registration": "D-AIUX", "operator": "Ghost Air"},
            {"registration": "D-AIUY", "operator": "Lufthansa", "seats": -5},
            {"registration": "D-AIUZ", "operator": "Lufthansa"},
        ],
        accept_ql=0b1110,
    )

    assert (result.loaded, result.skipped) == (2, 1)
    assert (result.quality_accepted, result.quality_rejected) == (1, 1)
    assert result.errors.messages == ["Row 2: quality 1 exceeds accepted mask 14"]

    aircraft = _rows_by(store, schema, "Aircraft", "registration")
    flagged = aircraft["D-AIUX"]
    assert flagged["_ql"] == 8
    assert flagged["operator_id"] == store.sentinel_id
    assert json.loads(flagged["_qd"])[0]["value"] == "Ghost Air"
    assert aircraft["D-AIUZ"]["_ql"] == 0


def test_standard_mode_applies_field_rules_on_request(
    store: SqlAlchemyEntityStore, schema: Schema
) -> None:
    validator = FakeRuleValidator(field_rules=seats_must_be_positive)
    context = LoadContext(store=store, schema=schema, validator=validator)
    _seed_reference_data(context)
    records: list[Record] = [{"registration": "D-AIUY", "operator": "Lufthansa", "seats": -5}]

    lenient = _load(context, "Aircraft", records)
    strict = _load(context, "Aircraft", records, validate_fields=True)

    assert lenient.loaded == 1
    assert strict.loaded == 0
    assert strict.errors.messages == ["Row 1: seats: seats must be positive"]


def test_self_references_are_reconciled_after_the_batch(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    result = _load(context, "EngineType", list(ENGINE_TYPES))

    engines = _rows_by(store, context.schema, "EngineType", "name")
    assert result.loaded == 3
    assert engines["CFM56-7B"]["successor_id"] == engines["LEAP-1B"]["id"]
    assert engines["LEAP-1B"]["successor_id"] is None
    assert store.foreign_keys_enabled()


def test_self_reference_to_a_skipped_row_is_cleared(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    result = _load(
        context,
        "EngineType",
        [{"name": "CFM56-7B", "successor": "#3"}, {"name": "LEAP-1B"}, {"name": " "}],
    )

    assert (result.loaded, result.skipped) == (2, 1)
    assert result.errors.messages == [
        "Row 3: required field name is empty",
        "Row 1: successor_id refers to row 3, which was not loaded",
    ]
    assert _rows_by(store, context.schema, "EngineType", "name")["CFM56-7B"]["successor_id"] is None


def test_store_failures_skip_the_row(context: LoadContext) -> None:
    result = _load(context, "Aircraft", [{"registration": "D-AIUA", "operator_id": 999}])

    assert (result.loaded, result.skipped) == (0, 1)
    assert len(result.store_errors.messages) == 1
    assert "FOREIGN KEY" in result.store_errors.messages[0]
    assert result.to_dict()["errors"] == result.store_errors.messages


def test_skip_invalid_prevalidates_the_batch(context: LoadContext) -> None:
    _seed_reference_data(context)

    result = _load(
        context,
        "Aircraft",
        [
            {"registration": "D-AIUA", "operator": "Lufthansa"},
            {"registration": "D-AIUB", "operator": "Nobody"},
        ],
        skip_invalid=True,
    )

    assert (result.loaded, result.skipped) == (1, 1)
    assert result.errors.messages == ['Row 2: "Nobody" not found in Operator']


def test_batch_duplicates_are_reported(context: LoadContext) -> None:
    result = _load(context, "Note", [{"title": "Fleet plan"}, {"title": "Fleet plan"}])

    assert result.loaded == 2
    assert [d.to_dict() for d in result.duplicates] == [
        {"value": "Fleet plan", "firstRow": 1, "duplicateRow": 2}
    ]


def test_media_and_aggregates_are_normalised(
    store: SqlAlchemyEntityStore, schema: Schema
) -> None:
    media = FakeMediaService(failing={"https://example.org/missing.jpg"})
    context = LoadContext(store=store, schema=schema, media_service=media)
    _seed_reference_data(context)

    result = _load(
        context,
        "Aircraft",
        [
            {"registration": "D-AIUA", "operator": "Swiss", "photo": "https://example.org/a.jpg"},
            {
                "registration": "D-AIUB",
                "operator": "Swiss",
                "photo": "https://example.org/missing.jpg",
            },
        ],
    )
    airports = _load(
        context, "Airport", [{"code": "ZRH", "position": {"lat": 47.46, "lng": 8.55}}]
    )

    aircraft = _rows_by(store, schema, "Aircraft", "registration")
    assert result.loaded == 2
    assert [error.field for error in result.media_errors] == ["photo"]
    assert aircraft["D-AIUA"]["photo"] == "media-1"
    assert aircraft["D-AIUB"]["photo"] is None
    assert airports.loaded == 1
    airport = _rows_by(store, schema, "Airport", "code")["ZRH"]
    assert (airport["position_lat"], airport["position_lng"]) == (47.46, 8.55)


def test_load_entity_requires_a_source_file(context: LoadContext, seed_dir: Path) -> None:
    with pytest.raises(SourceNotFoundError):
        asyncio.run(load_entity(context, "Operator", seed_dir))


def test_load_all_follows_dependency_order(context: LoadContext, seed_dir: Path) -> None:
    write_records(
        seed_dir,
        "Aircraft",
        [
            {"registration": "D-AINA", "operator": "Lufthansa", "type": "Airbus A320 neo"},
            {"registration": "D-ABOK", "operator": "Condor", "engine": "CFM56-7B"},
        ],
    )
    write_records(seed_dir, "Operator", OPERATORS)
    write_records(seed_dir, "AircraftType", AIRCRAFT_TYPES)
    write_records(seed_dir, "EngineType", ENGINE_TYPES)
    (seed_dir / "Airport.json").write_text("{", encoding="utf-8")

    outcome = asyncio.run(load_all(context, seed_dir, source_label="seed"))

    order = list(outcome)
    assert order.index("Operator") < order.index("Aircraft")
    assert order.index("EngineType") < order.index("Aircraft")
    assert "Note" not in outcome
    aircraft = outcome["Aircraft"]
    assert isinstance(aircraft, LoadResult)
    assert aircraft.loaded == 2
    assert aircraft.reference_errors_total == 0
    assert aircraft.source == "seed"
    failure = outcome["Airport"]
    assert isinstance(failure, LoadFailure)
    assert "not valid JSON" in failure.error


def test_import_all_prefers_import_files(
    context: LoadContext, seed_dir: Path, import_dir: Path
) -> None:
    write_records(seed_dir, "Operator", OPERATORS)
    write_records(seed_dir, "AircraftType", AIRCRAFT_TYPES)
    write_records(import_dir, "Operator", [{"name": "Eurowings", "country": "DE"}])

    outcome = asyncio.run(import_all(context, import_dir, seed_dir))

    operators = outcome["Operator"]
    assert isinstance(operators, LoadResult)
    assert (operators.source, operators.loaded) == ("import", 1)
    types = outcome["AircraftType"]
    assert isinstance(types, LoadResult)
    assert types.source == "seed"


def test_clear_entity_is_blocked_by_references(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    schema = context.schema
    _seed_reference_data(context)
    _load(context, "Aircraft", [{"registration": "D-AIUA", "operator": "Lufthansa"}])

    with pytest.raises(ClearBlockedError) as excinfo:
        clear_entity(store, schema, "Operator")

    assert excinfo.value.referencing == {"Aircraft": 1}
    assert str(excinfo.value) == "Cannot clear Operator: referenced by Aircraft (1)"
    assert clear_entity(store, schema, "Aircraft") == 1
    assert clear_entity(store, schema, "Operator") == 3


def test_clear_entity_ignores_self_references(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _load(context, "EngineType", list(ENGINE_TYPES))

    assert clear_entity(store, context.schema, "EngineType") == 3
    assert store.count_rows(context.schema.entity("EngineType")) == 0


def test_clear_all_and_reset_all(
    context: LoadContext, store: SqlAlchemyEntityStore, seed_dir: Path
) -> None:
    schema = context.schema
    write_records(seed_dir, "Operator", OPERATORS)
    _seed_reference_data(context)
    _load(context, "Aircraft", [{"registration": "D-AIUA", "operator": "Lufthansa"}])

    removed = clear_all(store, schema)

    assert removed["Aircraft"] == 1
    assert removed["Operator"] == 3
    assert store.count_rows(schema.entity("AircraftType")) == 0
    assert store.get_row(schema.entity("Operator"), store.sentinel_id) is not None

    outcome = asyncio.run(reset_all(context, seed_dir))

    assert list(outcome) == ["Operator"]
    assert store.count_rows(schema.entity("Operator")) == 3


def test_merge_mode_is_idempotent(context: LoadContext, store: SqlAlchemyEntityStore) -> None:
    schema = context.schema
    for entity_name, records in (
        ("Operator", OPERATORS),
        ("AircraftType", AIRCRAFT_TYPES),
        ("EngineType", ENGINE_TYPES),
    ):
        _load(context, entity_name, list(records), mode=ImportMode.MERGE)
        count = store.count_rows(schema.entity(entity_name))

        again = _load(context, entity_name, list(records), mode=ImportMode.MERGE)

        assert (again.loaded, again.updated, again.skipped) == (0, len(records), 0)
        assert store.count_rows(schema.entity(entity_name)) == count


def test_reloading_self_references_points_at_the_new_rows(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _load(context, "EngineType", list(ENGINE_TYPES))

    result = _load(context, "EngineType", list(ENGINE_TYPES))

    engines = _rows_by(store, context.schema, "EngineType", "name")
    assert (result.loaded, result.replaced) == (0, 3)
    assert result.errors.messages == []
    assert engines["CFM56-7B"]["successor_id"] == engines["LEAP-1B"]["id"]
    assert {row["successor_id"] for row in engines.values()} <= {
        row["id"] for row in engines.values()
    } | {None}


def test_reference_enforcement_returns_after_a_self_referencing_load(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _load(context, "Operator", list(OPERATORS))
    engines = _load(context, "EngineType", list(ENGINE_TYPES))

    aircraft = _load(
        context,
        "Aircraft",
        [
            {"registration": "D-AIUA", "operator": "Lufthansa", "engine": "LEAP-1B"},
            {"registration": "D-AIUB", "operator": "Lufthansa", "engine_id": 999},
        ],
    )

    stored = _rows_by(store, context.schema, "EngineType", "name")
    assert engines.loaded == 3
    assert stored["CFM56-7B"]["successor_id"] == stored["LEAP-1B"]["id"]
    assert (aircraft.loaded, aircraft.skipped) == (1, 1)
    assert "FOREIGN KEY" in aircraft.store_errors.messages[0]
    assert store.foreign_keys_enabled()


def test_normalised_hits_do_not_make_fuzzy_matches_ambiguous(
    context: LoadContext, store: SqlAlchemyEntityStore
) -> None:
    _seed_reference_data(context)
    schema = context.schema

    result = _load(
        context,
        "Aircraft",
        [
            {"registration": "D-ABKA", "operator": "Condor", "type": "Boeing 737  800"},
            {"registration": "D-ABKB", "operator": "Condor", "type": "Boeing 800"},
        ],
    )

    boeing_800 = store.find_id(
        schema.entity("AircraftType"), {"manufacturer": "Boeing", "model": "737", "variant": "800"}
    )
    aircraft = _rows_by(store, schema, "Aircraft", "registration")
    assert result.reference_errors_total == 0
    assert aircraft["D-ABKA"]["type_id"] == boeing_800
    assert aircraft["D-ABKB"]["type_id"] == boeing_800
