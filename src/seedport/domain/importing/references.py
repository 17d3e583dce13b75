"""Foreign-key resolution for import records.

Resolution order per reference: exact label, normalised label, fuzzy
subsequence match (concatenated labels with a single separator), then any
unique field of the target. Slow-path hits are cached in the lookup.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeAlias

from seedport.domain.importing.labels import (
    LookupMap,
    PendingRow,
    RefTarget,
    fuzzy_label_match,
    label_separator,
)
from seedport.domain.records import ConceptualField, TechnicalField, Unmatched, classify_reference

if TYPE_CHECKING:
    from collections.abc import Mapping

    from seedport.domain.importing.labels import LookupSet
    from seedport.domain.ports import EntityStore
    from seedport.domain.records import Record
    from seedport.domain.schema import EntityDescriptor, ForeignKey, Schema

log = logging.getLogger(__name__)

UniqueFinder: TypeAlias = "Callable[[EntityDescriptor, str], int | None]"


@dataclass(frozen=True, slots=True)
class ReferenceWarning:
    field: str
    column: str
    value: str
    target_entity: str
    required: bool = False

    @property
    def message(self) -> str:
        return f'"{self.value}" not found in {self.target_entity}'


@dataclass(frozen=True, slots=True)
class FuzzyMatchUsage:
    field: str
    value: str
    matched_label: str
    target_entity: str


@dataclass(slots=True)
class ResolvedRecord:
    values: Record
    warnings: list[ReferenceWarning] = field(default_factory=list)
    fuzzy_matches: list[FuzzyMatchUsage] = field(default_factory=list)
    pending: dict[str, PendingRow] = field(default_factory=dict)
    """Storage columns pointing at rows of the batch still in flight."""

    @property
    def unresolved_columns(self) -> set[str]:
        return {w.column for w in self.warnings}


@dataclass(frozen=True, slots=True)
class Resolution:
    target: RefTarget
    fuzzy_label: str | None = None


def find_by_unique_field(store: EntityStore, target: EntityDescriptor, value: str) -> int | None:
    for column in target.unique_columns:
        found = store.find_id(target, {column: value})
        if found is not None:
            return found
    return None


def resolve_reference(
    value: str,
    lookup: LookupMap,
    target: EntityDescriptor | None,
    find_by_unique: UniqueFinder | None,
) -> Resolution | None:
    hit = lookup.exact(value)
    if hit is not None:
        return Resolution(hit)

    hit = lookup.normalized_match(value)
    if hit is not None:
        lookup.remember(value, hit)
        return Resolution(hit)

    separator = label_separator(target.label_expression) if target is not None else None
    fuzzy = fuzzy_label_match(value, lookup, separator)
    if fuzzy is not None:
        lookup.remember(value, fuzzy.target)
        return Resolution(fuzzy.target, fuzzy_label=fuzzy.matched_label)

    if target is not None and find_by_unique is not None:
        found = find_by_unique(target, value)
        if found is not None:
            lookup.remember(value, found)
            return Resolution(found)
    return None


def resolve_conceptual_fks(
    entity: EntityDescriptor,
    record: Mapping[str, object],
    lookups: LookupSet,
    schema: Schema,
    find_by_unique: UniqueFinder | None = None,
) -> ResolvedRecord:
    """Replace label references in ``record`` by ids; the input is not modified."""

    resolved = ResolvedRecord(values=dict(record))
    for fk in entity.foreign_keys:
        reference = classify_reference(resolved.values, fk)
        match reference:
            case Unmatched():
                continue
            case ConceptualField(key=key, label=label) | TechnicalField(key=key, label=label):
                _apply(entity, fk, key, label, resolved, lookups, schema, find_by_unique)
    return resolved


def _apply(  # noqa: PLR0913
    entity: EntityDescriptor,
    fk: ForeignKey,
    key: str,
    label: str,
    resolved: ResolvedRecord,
    lookups: LookupSet,
    schema: Schema,
    find_by_unique: UniqueFinder | None,
) -> None:
    target_name = entity.fk_target(fk)
    target = schema.get(target_name)
    lookup = lookups.setdefault(target_name, LookupMap())
    resolution = resolve_reference(label, lookup, target, find_by_unique)

    if key != fk.column:
        del resolved.values[key]

    if resolution is None:
        column = entity.column(fk.column)
        resolved.warnings.append(
            ReferenceWarning(
                field=fk.display_name,
                column=fk.column,
                value=label,
                target_entity=target_name,
                required=bool(column and column.required),
            )
        )
        log.warning(
            "%s.%s: %r not found in %s", entity.class_name, fk.display_name, label, target_name
        )
        if key == fk.column:
            resolved.values[fk.column] = None
        return

    if resolution.fuzzy_label is not None:
        log.debug("%s.%s: fuzzy %r -> %r", entity.class_name, key, label, resolution.fuzzy_label)
        resolved.fuzzy_matches.append(
            FuzzyMatchUsage(
                field=fk.display_name,
                value=label,
                matched_label=resolution.fuzzy_label,
                target_entity=target_name,
            )
        )
    resolved.values[fk.column] = resolution.target
    if isinstance(resolution.target, PendingRow):
        resolved.pending[fk.column] = resolution.target
