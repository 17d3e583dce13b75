"""How an import record refers to another entity.

A record may name a reference conceptually (``"operator": "Lufthansa"``), put
a label into the storage column itself (``"operator_id": "Lufthansa"``) or
carry a ready id. Each foreign key is classified exactly once so the resolver
never has to re-inspect the record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Mapping

    from seedport.domain.schema import ForeignKey

Record: TypeAlias = "dict[str, object]"


@dataclass(frozen=True, slots=True)
class ConceptualField:
    """The label sits under the FK's display name."""

    key: str
    label: str


@dataclass(frozen=True, slots=True)
class TechnicalField:
    """A label was written into the storage column instead of an id."""

    key: str
    label: str


@dataclass(frozen=True, slots=True)
class Unmatched:
    """Nothing to resolve: the key is absent, empty, or already an id."""


UNMATCHED: Final = Unmatched()

ReferenceField: TypeAlias = "ConceptualField | TechnicalField | Unmatched"


def is_numeric_text(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def classify_reference(record: Mapping[str, object], fk: ForeignKey) -> ReferenceField:
    conceptual = record.get(fk.display_name)
    if fk.display_name != fk.column and isinstance(conceptual, str) and conceptual.strip():
        return ConceptualField(key=fk.display_name, label=conceptual)

    technical = record.get(fk.column)
    if isinstance(technical, str) and technical.strip() and not is_numeric_text(technical):
        return TechnicalField(key=fk.column, label=technical)

    return UNMATCHED


def is_empty(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
