"""Record quality marks and neutral substitute values.

A record admitted under quality mode carries ``_ql``, a bit mask of its
deficits, and ``_qd``, a JSON list describing each one with the original
value. Defective values are replaced by neutral values that satisfy storage
constraints:

=========================  ===========================================
column                     neutral value
=========================  ===========================================
explicit null override     the override
foreign key                the sentinel row id (1 by default)
enum custom type           first enum value
pattern custom type        ``"?"``
aggregate member           ``0`` if numeric, else ``"?"``
string/url/mail/media      ``"?"``
int/number/real            ``999999``
date                       ``"1970-01-01"``
bool/boolean               ``0``
json                       ``"{}"``
geo                        ``0``
anything else              ``"?"``
=========================  ===========================================
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntFlag
from typing import TYPE_CHECKING, Final

from seedport.config.importing import DEFAULT_SENTINEL_ID
from seedport.domain.records import is_empty
from seedport.domain.schema import ID_COLUMN, QL_COLUMN, SYSTEM_COLUMNS

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from seedport.domain.importing.references import ReferenceWarning
    from seedport.domain.ports import RecordValidator
    from seedport.domain.records import Record
    from seedport.domain.schema import Column, EntityDescriptor


class Deficit(IntFlag):
    FIELD_RULE = 1
    REQUIRED_EMPTY = 2
    REQUIRED_REFERENCE_EMPTY = 4
    UNRESOLVED_REFERENCE = 8
    OBJECT_RULE = 16
    SENTINEL = 256


OBJECT_FIELD: Final[str] = "_object"

NEUTRAL_DEFAULTS: Final[dict[str, object]] = {
    "string": "?",
    "int": 999999,
    "integer": 999999,
    "number": 999999,
    "real": 999999,
    "date": "1970-01-01",
    "bool": 0,
    "boolean": 0,
    "url": "?",
    "mail": "?",
    "media": "?",
    "json": "{}",
    "geo": 0,
}


@dataclass(frozen=True, slots=True)
class DeficitEntry:
    field: str
    ql: Deficit
    value: object
    message: str

    def to_dict(self) -> dict[str, object]:
        return {
            "field": self.field,
            "ql": int(self.ql),
            "value": self.value,
            "message": self.message,
        }


@dataclass(slots=True)
class QualityAssessment:
    entries: list[DeficitEntry] = field(default_factory=list)

    @property
    def ql(self) -> int:
        mask = 0
        for entry in self.entries:
            mask |= entry.ql
        return int(mask)

    def accepted_by(self, accept_ql: int) -> bool:
        return self.ql & ~accept_ql == 0

    def qd_json(self) -> str | None:
        if not self.entries:
            return None
        return json.dumps([entry.to_dict() for entry in self.entries], default=str)

    def flagged(self) -> set[str]:
        return {entry.field for entry in self.entries}


def neutral_value(
    column: Column, *, sentinel_id: int = DEFAULT_SENTINEL_ID, reference: bool = False
) -> object:
    if column.null_override is not None:
        return column.null_override
    if reference or column.foreign_key is not None:
        return sentinel_id
    if column.enum_values:
        return column.enum_values[0]
    if column.pattern is not None:
        return "?"
    if column.aggregate_source is not None:
        return 0 if column.is_numeric else "?"
    if column.custom_type in NEUTRAL_DEFAULTS:
        return NEUTRAL_DEFAULTS[column.custom_type]
    return NEUTRAL_DEFAULTS.get(column.type, "?")


def build_sentinel_record(
    entity: EntityDescriptor, *, sentinel_id: int = DEFAULT_SENTINEL_ID
) -> Record:
    """The reserved row every table starts with: neutral values, ``_ql = 256``."""

    fk_columns = {fk.column for fk in entity.foreign_keys}
    record: Record = {ID_COLUMN: sentinel_id, QL_COLUMN: int(Deficit.SENTINEL)}
    for column in entity.columns:
        if column.system or column.name in SYSTEM_COLUMNS:
            continue
        if column.computed and column.name not in fk_columns:
            continue
        record[column.name] = neutral_value(
            column, sentinel_id=sentinel_id, reference=column.name in fk_columns
        )
    return record


def assess_quality(
    entity: EntityDescriptor,
    values: Mapping[str, object],
    warnings: Iterable[ReferenceWarning] = (),
    validator: RecordValidator | None = None,
) -> QualityAssessment:
    """Collect every deficit of an FK-resolved record."""

    assessment = QualityAssessment()
    flagged: set[str] = set()
    for warning in warnings:
        assessment.entries.append(
            DeficitEntry(
                field=warning.field,
                ql=Deficit.UNRESOLVED_REFERENCE,
                value=warning.value,
                message=warning.message,
            )
        )
        flagged.update((warning.field, warning.column))

    fk_columns = {fk.column for fk in entity.foreign_keys}
    for column in entity.columns:
        if (
            column.name in SYSTEM_COLUMNS
            or column.system
            or not column.required
            or column.aggregate_source is not None
            or (column.computed and column.name not in fk_columns)
            or column.name in flagged
        ):
            continue
        value = values.get(column.name)
        if is_empty(value):
            bit = (
                Deficit.REQUIRED_REFERENCE_EMPTY
                if column.name in fk_columns
                else Deficit.REQUIRED_EMPTY
            )
            assessment.entries.append(
                DeficitEntry(
                    field=column.name,
                    ql=bit,
                    value=value,
                    message=f"required field {column.name} is empty",
                )
            )
            flagged.add(column.name)

    if validator is not None:
        for violation in validator.validate_field_rules_only(entity.class_name, values):
            if violation.field in flagged:
                continue
            assessment.entries.append(
                DeficitEntry(
                    field=violation.field,
                    ql=Deficit.FIELD_RULE,
                    value=values.get(violation.field),
                    message=violation.message,
                )
            )
            flagged.add(violation.field)
        assessment.entries.extend(
            DeficitEntry(
                field=OBJECT_FIELD, ql=Deficit.OBJECT_RULE, value=None, message=violation.message
            )
            for violation in validator.validate_object_rules_only(entity.class_name, values)
        )
    return assessment


def neutralize(
    entity: EntityDescriptor,
    values: Record,
    assessment: QualityAssessment,
    *,
    sentinel_id: int = DEFAULT_SENTINEL_ID,
) -> None:
    """Replace each neutralisable defective value in place.

    Unresolved references keep the sentinel redirection applied before
    assessment; empty required references are pointed at the sentinel here.
    Object rule deficits have no single field to replace.
    """

    for entry in assessment.entries:
        if entry.ql & Deficit.OBJECT_RULE:
            continue
        column = entity.column(entry.field)
        if column is None:
            continue
        if entity.foreign_key_for(column.name) is not None:
            if entry.ql & Deficit.REQUIRED_REFERENCE_EMPTY:
                values[column.name] = sentinel_id
            continue
        values[column.name] = neutral_value(column, sentinel_id=sentinel_id)
