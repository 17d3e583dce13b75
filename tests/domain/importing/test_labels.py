from __future__ import annotations

from typing import TYPE_CHECKING

from seedport.domain.importing.labels import (
    LookupMap,
    PendingRow,
    build_label_lookup,
    build_label_lookup_from_seed,
    build_lookup_from_batch,
    build_lookup_from_rows,
    build_reverse_lookup,
    compute_label,
    fuzzy_label_match,
    is_subsequence,
    label_separator,
    normalize_label,
)
from seedport.domain.importing.sources import write_records
from seedport.domain.schema import LabelExpression, LabelPart
from tests.helpers.aviation import AIRCRAFT_TYPE, AIRCRAFT_TYPES, OPERATOR, OPERATORS

if TYPE_CHECKING:
    from pathlib import Path

    from seedport.adapters.sqlalchemy.store import SqlAlchemyEntityStore
    from seedport.domain.schema import Schema


def test_lookup_registers_label_variants_and_positions() -> None:
    lookup = build_lookup_from_rows(
        [({"name": "Lufthansa", "country": "DE"}, 7), ({"name": "Swiss", "country": None}, 9)],
        "name",
        "country",
    )

    assert lookup.exact("Lufthansa") == 7
    assert lookup.exact("DE") == 7
    assert lookup.exact("Lufthansa (DE)") == 7
    assert lookup.exact("#2") == 9
    assert lookup.exact("Swiss (None)") is None


def test_first_row_wins_on_duplicate_labels() -> None:
    lookup = LookupMap()
    lookup.add("Condor", 2)
    lookup.add("Condor", 5)
    lookup.add("  condor ", 6)

    assert lookup.exact("Condor") == 2
    assert lookup.normalized_match("CONDOR") == 2


def test_positional_keys_stay_out_of_normalized_map() -> None:
    lookup = LookupMap()
    lookup.add("#1", 3)
    lookup.add("", 4)
    lookup.add(None, 5)

    assert lookup.exact("#1") == 3
    assert lookup.normalized == {}
    assert len(lookup) == 1
    assert list(lookup.labels()) == []


def test_overlay_prefers_existing_labels_but_takes_positions() -> None:
    stored = LookupMap()
    stored.add("LEAP-1B", 4)
    stored.add("#1", 4)
    batch = LookupMap()
    batch.add("LEAP-1B", PendingRow(1))
    batch.add("PW1100G-JM", PendingRow(2))
    batch.add("#1", PendingRow(1))

    combined = stored.overlay(batch)

    assert combined.exact("LEAP-1B") == 4
    assert combined.exact("PW1100G-JM") == PendingRow(2)
    assert combined.exact("#1") == PendingRow(1)
    assert stored.exact("PW1100G-JM") is None


def test_normalize_label_strips_whitespace_and_case() -> None:
    assert normalize_label("  Boeing  737\t800 ") == "boeing737800"


def test_compute_label_concatenates_fields_and_literals() -> None:
    record = {"manufacturer": "Airbus", "model": "A320", "variant": "neo"}

    assert compute_label(AIRCRAFT_TYPE.label_expression, record) == "Airbus A320 neo"
    assert compute_label(AIRCRAFT_TYPE.label_expression, {}) is None


def test_compute_label_uses_conceptual_value_for_fk_chains() -> None:
    expression = LabelExpression.join(
        LabelPart.fk_chain("operator"), LabelPart.literal(" / "), LabelPart.field("registration")
    )

    label = compute_label(expression, {"operator": "Swiss", "registration": "HB-JCA"})

    assert label == "Swiss / HB-JCA"


def test_label_separator_requires_one_distinct_literal() -> None:
    mixed = LabelExpression.join(
        LabelPart.field("a"), LabelPart.literal(" "), LabelPart.field("b"), LabelPart.literal("-")
    )

    assert label_separator(AIRCRAFT_TYPE.label_expression) == " "
    assert label_separator(mixed) is None
    assert label_separator(LabelExpression.single("name")) is None
    assert label_separator(None) is None


def test_is_subsequence_keeps_order() -> None:
    assert is_subsequence(["Boeing", "800"], ["Boeing", "737", "800"])
    assert not is_subsequence(["800", "Boeing"], ["Boeing", "737", "800"])


def test_fuzzy_match_needs_a_single_longer_candidate() -> None:
    lookup = LookupMap()
    for index, record in enumerate(AIRCRAFT_TYPES, start=2):
        lookup.add(compute_label(AIRCRAFT_TYPE.label_expression, record), index)

    match = fuzzy_label_match("Boeing 800", lookup, " ")

    assert match is not None
    assert match.target == 3
    assert match.matched_label == "Boeing 737 800"
    assert fuzzy_label_match("Boeing 737", lookup, " ") is None
    assert fuzzy_label_match("Boeing", lookup, " ") is None
    assert fuzzy_label_match("Airbus A320 neo", lookup, " ") is None
    assert fuzzy_label_match("Boeing 800", lookup, None) is None


def test_batch_lookup_points_at_pending_rows() -> None:
    lookup = build_lookup_from_batch(OPERATOR, OPERATORS)

    assert lookup.exact("Condor") == PendingRow(2)
    assert lookup.exact("#3") == PendingRow(3)


def test_seed_lookup_uses_positions_and_reports_presence(tmp_path: Path) -> None:
    write_records(tmp_path, "AircraftType", AIRCRAFT_TYPES)

    lookup, found = build_label_lookup_from_seed(AIRCRAFT_TYPE, tmp_path)
    missing, missing_found = build_label_lookup_from_seed(OPERATOR, tmp_path)

    assert found
    assert lookup.exact("Boeing 737 MAX") == 3
    assert not missing_found
    assert len(missing) == 0


def test_stored_lookup_skips_flagged_rows(store: SqlAlchemyEntityStore, schema: Schema) -> None:
    operator = schema.entity("Operator")
    clean_id = store.insert(operator, {"name": "Swiss", "country": "CH", "_ql": 0})
    store.insert(operator, {"name": "Flagged", "_ql": 8})

    lookup = build_label_lookup(store, schema, operator)
    reverse = build_reverse_lookup(store, schema, operator)

    assert lookup.exact("Swiss (CH)") == clean_id
    assert lookup.exact("Flagged") is None
    assert sorted(reverse.values()) == ["Flagged", "Swiss"]


def test_stored_lookup_computes_concatenated_labels(
    store: SqlAlchemyEntityStore, schema: Schema
) -> None:
    aircraft_type = schema.entity("AircraftType")
    row_id = store.insert(
        aircraft_type, {"manufacturer": "Airbus", "model": "A320", "variant": "neo"}
    )

    lookup = build_label_lookup(store, schema, aircraft_type)

    assert lookup.exact("Airbus A320 neo") == row_id
    assert lookup.normalized_match("airbus a320NEO") == row_id


def test_remembered_matches_are_not_fuzzy_candidates() -> None:
    lookup = LookupMap()
    for index, record in enumerate(AIRCRAFT_TYPES, start=2):
        lookup.add(compute_label(AIRCRAFT_TYPE.label_expression, record), index)
    lookup.remember("Boeing 737  800", 3)

    match = fuzzy_label_match("Boeing 800", lookup, " ")

    assert lookup.exact("Boeing 737  800") == 3
    assert "Boeing 737  800" not in dict(lookup.labels())
    assert match is not None
    assert match.target == 3


def test_overlay_can_let_the_other_map_win_labels() -> None:
    stored = LookupMap()
    stored.add("LEAP-1B", 4)
    stored.add("CFM56-7B", 5)
    batch = LookupMap()
    batch.add("LEAP-1B", PendingRow(2))
    batch.add("#1", PendingRow(1))

    combined = stored.overlay(batch, other_wins=True)

    assert combined.exact("LEAP-1B") == PendingRow(2)
    assert combined.exact("CFM56-7B") == 5
    assert combined.exact("#1") == PendingRow(1)
    assert combined.normalized_match("leap-1b") == PendingRow(2)
