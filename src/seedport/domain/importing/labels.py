"""Label lookups: human-readable names to row ids.

Lookups are plain values passed down the call chain. They come from three
places:

* storage: clean rows (``_ql = 0``) in id order;
* a seed file that has not been loaded yet (positional ids, only good for
  checking that a reference *would* resolve);
* the batch currently being imported, whose rows have no ids yet
  (:class:`PendingRow` targets, reconciled after the batch is written).

Every lookup carries the primary label, the secondary label, the combined
``"primary (secondary)"`` form and a positional ``#N`` key, plus a normalised
sub-map (whitespace removed, lower-cased) that positional keys never enter.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeAlias

from seedport.domain.importing.sources import read_records_if_present
from seedport.domain.schema import ID_COLUMN, LabelPartKind

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping, Sequence
    from pathlib import Path

    from seedport.domain.ports import EntityStore
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor, LabelExpression, Schema

log = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class PendingRow:
    """A row of the batch in flight, by 1-based position."""

    index: int


RefTarget: TypeAlias = "int | PendingRow"


def normalize_label(value: str) -> str:
    return _WHITESPACE.sub("", value).lower()


def is_positional(key: str) -> bool:
    return key.startswith("#")


@dataclass(slots=True)
class LookupMap:
    entries: dict[str, RefTarget] = field(default_factory=dict)
    normalized: dict[str, RefTarget] = field(default_factory=dict)
    remembered: dict[str, RefTarget] = field(default_factory=dict)
    """Values resolved by a slower strategy; never offered as fuzzy candidates."""

    def add(self, key: object, target: RefTarget) -> None:
        """Register ``key`` unless an earlier row already claimed it."""

        if key is None:
            return
        text = str(key)
        if not text:
            return
        self.entries.setdefault(text, target)
        if not is_positional(text):
            self.normalized.setdefault(normalize_label(text), target)

    def remember(self, key: str, target: RefTarget) -> None:
        """Cache a match found by a slower strategy so later rows hit it directly."""

        self.remembered[key] = target

    def exact(self, value: str) -> RefTarget | None:
        hit = self.entries.get(value)
        return hit if hit is not None else self.remembered.get(value)

    def normalized_match(self, value: str) -> RefTarget | None:
        return self.normalized.get(normalize_label(value))

    def labels(self) -> Iterator[tuple[str, RefTarget]]:
        return ((k, v) for k, v in self.entries.items() if not is_positional(k))

    def overlay(self, other: LookupMap, *, other_wins: bool = False) -> LookupMap:
        """Combine with ``other``.

        A label claimed by both maps keeps this map's target unless
        ``other_wins``; positional keys always come from ``other``.
        """

        combined = LookupMap()
        for source in (other, self) if other_wins else (self, other):
            for key, target in source.entries.items():
                if not is_positional(key):
                    combined.add(key, target)
        for source in (self, other):
            combined.entries.update(
                (key, target) for key, target in source.entries.items() if is_positional(key)
            )
        return combined

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)


LookupSet: TypeAlias = "dict[str, LookupMap]"


def build_lookup_from_rows(
    rows: Iterable[tuple[Mapping[str, object], RefTarget]],
    label_column: str | None,
    label2_column: str | None,
) -> LookupMap:
    lookup = LookupMap()
    for position, (row, target) in enumerate(rows, start=1):
        primary = row.get(label_column) if label_column else None
        secondary = row.get(label2_column) if label2_column else None
        lookup.add(primary, target)
        lookup.add(secondary, target)
        if primary is not None and secondary is not None:
            lookup.add(f"{primary} ({secondary})", target)
        lookup.add(f"#{position}", target)
    return lookup


def build_lookup_from_computed_labels(pairs: Iterable[tuple[str | None, RefTarget]]) -> LookupMap:
    lookup = LookupMap()
    for position, (label, target) in enumerate(pairs, start=1):
        lookup.add(label, target)
        lookup.add(f"#{position}", target)
    return lookup


def _lookup_from_records(
    entity: EntityDescriptor,
    records: Sequence[Record],
    targets: Sequence[RefTarget],
) -> LookupMap:
    if entity.label_expression is not None:
        expression = entity.label_expression
        return build_lookup_from_computed_labels(
            (compute_label(expression, record), target)
            for record, target in zip(records, targets, strict=True)
        )
    return build_lookup_from_rows(
        zip(records, targets, strict=True), entity.label_column, entity.label2_column
    )


def build_label_lookup(store: EntityStore, schema: Schema, entity: EntityDescriptor) -> LookupMap:
    """Lookup over the clean rows currently stored for ``entity``."""

    rows = store.select_rows(entity, clean_only=True)
    if entity.label_expression is not None:
        computer = StoredLabels(store, schema)
        return build_lookup_from_computed_labels(
            (computer.label_for(entity, row), _row_id(row)) for row in rows
        )
    return build_lookup_from_rows(
        ((row, _row_id(row)) for row in rows), entity.label_column, entity.label2_column
    )


def build_label_lookup_from_seed(
    entity: EntityDescriptor, directory: Path
) -> tuple[LookupMap, bool]:
    """Lookup over a not-yet-loaded seed file; ids are row positions."""

    records = read_records_if_present(directory, entity.class_name)
    if records is None:
        return LookupMap(), False
    return _lookup_from_records(entity, records, range(1, len(records) + 1)), True


def build_lookup_from_batch(entity: EntityDescriptor, records: Sequence[Record]) -> LookupMap:
    targets = [PendingRow(index) for index in range(1, len(records) + 1)]
    return _lookup_from_records(entity, records, targets)


def build_reverse_lookup(
    store: EntityStore, schema: Schema, entity: EntityDescriptor
) -> dict[int, str]:
    """Row id to label, used to turn stored ids back into portable names."""

    reverse: dict[int, str] = {}
    computer = StoredLabels(store, schema)
    for row in store.select_rows(entity):
        if entity.label_expression is not None:
            label = computer.label_for(entity, row)
        else:
            value = row.get(entity.label_column) if entity.label_column else None
            label = None if value is None else str(value)
        if label:
            reverse[_row_id(row)] = label
    return reverse


def label_separator(expression: LabelExpression | None) -> str | None:
    """Separator of a concatenated label whose literal parts are all identical."""

    if expression is None or not expression.concat:
        return None
    literals = expression.literals
    if not literals or len(set(literals)) != 1:
        return None
    return literals[0] or None


def is_subsequence(needle: Sequence[str], haystack: Sequence[str]) -> bool:
    position = 0
    for segment in needle:
        while position < len(haystack) and haystack[position] != segment:
            position += 1
        if position >= len(haystack):
            return False
        position += 1
    return True


@dataclass(frozen=True, slots=True)
class FuzzyMatch:
    target: RefTarget
    matched_label: str


def fuzzy_label_match(value: str, lookup: LookupMap, separator: str | None) -> FuzzyMatch | None:
    """Match an abbreviated label against full concatenated labels.

    ``"Boeing 737"`` matches ``"Boeing 737 800"`` when the import value has at
    least two segments, fewer than the candidate, and its segments occur in the
    candidate in order. Anything but exactly one candidate is no match.
    """

    if not value or not separator:
        return None
    segments = value.split(separator)
    if len(segments) < 2:  # noqa: PLR2004
        return None
    candidates = [
        FuzzyMatch(target=target, matched_label=label)
        for label, target in lookup.labels()
        if len(segments) < len(parts := label.split(separator)) and is_subsequence(segments, parts)
    ]
    if len(candidates) != 1:
        if candidates:
            log.debug("Fuzzy match for %r is ambiguous (%d candidates)", value, len(candidates))
        return None
    return candidates[0]


def compute_label(expression: LabelExpression, record: Mapping[str, object]) -> str | None:
    """Label of an in-memory record; FK chains use the record's conceptual value."""

    if not expression.concat:
        value = record.get(expression.parts[0].value) if expression.parts else None
        return None if value is None else str(value)

    pieces: list[str] = []
    found = False
    for part in expression.parts:
        if part.kind is LabelPartKind.LITERAL:
            pieces.append(part.value)
            continue
        key = part.value if part.kind is LabelPartKind.FIELD else part.path[0]
        value = record.get(key)
        if value is not None:
            found = True
            pieces.append(str(value))
    return "".join(pieces) if found else None


class StoredLabels:
    """Computes labels of stored rows, following FK chains through storage."""

    def __init__(self, store: EntityStore, schema: Schema) -> None:
        self._store = store
        self._schema = schema
        self._rows: dict[tuple[str, int], Record | None] = {}

    def label_for(self, entity: EntityDescriptor, row: Mapping[str, object]) -> str | None:
        expression = entity.label_expression
        if expression is None:
            value = row.get(entity.label_column) if entity.label_column else None
            return None if value is None else str(value)
        if not expression.concat:
            return compute_label(expression, row)

        pieces: list[str] = []
        found = False
        for part in expression.parts:
            if part.kind is LabelPartKind.LITERAL:
                pieces.append(part.value)
                continue
            if part.kind is LabelPartKind.FIELD:
                value = row.get(part.value)
            else:
                value = self._follow(entity, row, part.path)
            if value is not None:
                found = True
                pieces.append(str(value))
        return "".join(pieces) if found else None

    def _follow(
        self, entity: EntityDescriptor, row: Mapping[str, object], path: tuple[str, ...]
    ) -> object:
        current_entity, current_row = entity, row
        hops = path[:-1] if len(path) > 1 else path
        for hop in hops:
            fk = next((fk for fk in current_entity.foreign_keys if fk.display_name == hop), None)
            if fk is None:
                return None
            target = self._schema.get(current_entity.fk_target(fk))
            target_id = current_row.get(fk.column)
            if target is None or not isinstance(target_id, int):
                return None
            fetched = self._fetch(target, target_id)
            if fetched is None:
                return None
            current_entity, current_row = target, fetched
        if len(path) == 1:
            return self.label_for(current_entity, current_row)
        return current_row.get(path[-1])

    def _fetch(self, entity: EntityDescriptor, row_id: int) -> Record | None:
        key = (entity.class_name, row_id)
        if key not in self._rows:
            self._rows[key] = self._store.get_row(entity, row_id)
        return self._rows[key]


def _row_id(row: Mapping[str, object]) -> int:
    value = row[ID_COLUMN]
    if not isinstance(value, int):
        raise TypeError(f"Row id must be an integer, got {value!r}")
    return value
