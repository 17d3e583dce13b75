"""Entity descriptors handed over by the schema compiler.

The compiler decides what exists; this module only gives its output a typed
shape and a few derived views the import engine asks for repeatedly
(label columns, unique columns, dependency order, inverse relationships).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from graphlib import TopologicalSorter
from typing import TYPE_CHECKING, Final

from seedport.domain.errors import UnknownEntityError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

ID_COLUMN: Final[str] = "id"
QL_COLUMN: Final[str] = "_ql"
QD_COLUMN: Final[str] = "_qd"
SYSTEM_COLUMNS: Final[tuple[str, ...]] = (
    ID_COLUMN,
    QL_COLUMN,
    QD_COLUMN,
    "_created_at",
    "_updated_at",
    "_version",
)


class LabelPartKind(StrEnum):
    FIELD = "field"
    LITERAL = "literal"
    FK_CHAIN = "fkChain"


@dataclass(frozen=True, slots=True)
class LabelPart:
    kind: LabelPartKind
    value: str

    @classmethod
    def field(cls, name: str) -> LabelPart:
        return cls(kind=LabelPartKind.FIELD, value=name)

    @classmethod
    def literal(cls, text: str) -> LabelPart:
        return cls(kind=LabelPartKind.LITERAL, value=text)

    @classmethod
    def fk_chain(cls, path: str) -> LabelPart:
        return cls(kind=LabelPartKind.FK_CHAIN, value=path)

    @property
    def path(self) -> tuple[str, ...]:
        return tuple(self.value.split("."))


@dataclass(frozen=True, slots=True)
class LabelExpression:
    """A single field or a concatenation of field, literal and FK-chain parts."""

    parts: tuple[LabelPart, ...]
    concat: bool = False

    @classmethod
    def single(cls, name: str) -> LabelExpression:
        return cls(parts=(LabelPart.field(name),))

    @classmethod
    def join(cls, *parts: LabelPart) -> LabelExpression:
        return cls(parts=parts, concat=True)

    @property
    def literals(self) -> tuple[str, ...]:
        return tuple(part.value for part in self.parts if part.kind is LabelPartKind.LITERAL)


@dataclass(frozen=True, slots=True, kw_only=True)
class Column:
    name: str
    type: str = "string"
    required: bool = False
    unique: bool = False
    default: object = None
    system: bool = False
    computed: bool = False
    foreign_key: str | None = None
    aggregate_source: str | None = None
    aggregate_field: str | None = None
    custom_type: str | None = None
    label: bool = False
    label2: bool = False
    null_override: object = None
    enum_values: tuple[object, ...] = ()
    pattern: str | None = None
    media: Mapping[str, object] | None = None

    @property
    def is_media(self) -> bool:
        return self.custom_type == "media"

    @property
    def is_numeric(self) -> bool:
        return self.type in {"int", "integer", "number", "real", "float"}


@dataclass(frozen=True, slots=True, kw_only=True)
class ForeignKey:
    column: str
    display_name: str
    target: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class InverseRelationship:
    """Entity ``entity`` points at the owner through its column ``column``."""

    entity: str
    column: str


@dataclass(frozen=True, slots=True, kw_only=True)
class EntityDescriptor:
    class_name: str
    table_name: str
    columns: tuple[Column, ...]
    foreign_keys: tuple[ForeignKey, ...] = ()
    unique_keys: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    label_expression: LabelExpression | None = None
    validation_rules: Mapping[str, object] | None = None
    object_rules: tuple[Mapping[str, object], ...] = ()

    def column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def fk_target(self, fk: ForeignKey) -> str:
        return fk.target or self.class_name

    def foreign_key_for(self, column_name: str) -> ForeignKey | None:
        for fk in self.foreign_keys:
            if fk.column == column_name:
                return fk
        return None

    @property
    def label_column(self) -> str | None:
        return next((c.name for c in self.columns if c.label), None)

    @property
    def label2_column(self) -> str | None:
        return next((c.name for c in self.columns if c.label2), None)

    @property
    def unique_columns(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns if c.unique and c.name != ID_COLUMN)

    @property
    def composite_keys(self) -> tuple[tuple[str, ...], ...]:
        return tuple(cols for cols in self.unique_keys.values() if cols)

    @property
    def has_uniqueness(self) -> bool:
        return bool(self.unique_columns or self.composite_keys)

    @property
    def has_self_reference(self) -> bool:
        return any(self.fk_target(fk) == self.class_name for fk in self.foreign_keys)

    @property
    def dependencies(self) -> tuple[str, ...]:
        """Other entities this one references (self-references excluded)."""

        seen: dict[str, None] = {}
        for fk in self.foreign_keys:
            target = self.fk_target(fk)
            if target != self.class_name:
                seen.setdefault(target, None)
        return tuple(seen)

    def writable_columns(self, *, include_system: bool = False) -> tuple[Column, ...]:
        """Columns an import may set.

        Computed columns are only written when they are also foreign keys; system
        columns only when restoring a backup verbatim.
        """

        fk_columns = {fk.column for fk in self.foreign_keys}
        return tuple(
            column
            for column in self.columns
            if (not column.computed or column.name in fk_columns)
            and (include_system or (not column.system and column.name not in SYSTEM_COLUMNS))
        )


@dataclass(frozen=True, slots=True)
class Schema:
    """The compiled schema: entities in dependency order plus their inverse links."""

    ordered_entities: tuple[EntityDescriptor, ...]
    inverse_relationships: Mapping[str, tuple[InverseRelationship, ...]] = field(
        default_factory=dict
    )

    @classmethod
    def from_entities(cls, entities: Iterable[EntityDescriptor]) -> Schema:
        """Derive order and inverse relationships when only the entities are known."""

        by_name = {entity.class_name: entity for entity in entities}
        sorter: TopologicalSorter[str] = TopologicalSorter()
        inverse: dict[str, list[InverseRelationship]] = {}
        for entity in by_name.values():
            sorter.add(entity.class_name, *(d for d in entity.dependencies if d in by_name))
            for fk in entity.foreign_keys:
                inverse.setdefault(entity.fk_target(fk), []).append(
                    InverseRelationship(entity=entity.class_name, column=fk.column)
                )
        ordered = tuple(by_name[name] for name in sorter.static_order())
        return cls(
            ordered_entities=ordered,
            inverse_relationships={name: tuple(links) for name, links in inverse.items()},
        )

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self.ordered_entities)

    def __contains__(self, name: object) -> bool:
        return any(entity.class_name == name for entity in self.ordered_entities)

    def get(self, name: str) -> EntityDescriptor | None:
        for entity in self.ordered_entities:
            if entity.class_name == name:
                return entity
        return None

    def entity(self, name: str) -> EntityDescriptor:
        entity = self.get(name)
        if entity is None:
            raise UnknownEntityError(name)
        return entity

    def referencing(self, name: str) -> tuple[InverseRelationship, ...]:
        return tuple(self.inverse_relationships.get(name, ()))
