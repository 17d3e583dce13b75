"""Pydantic models for the schema compiler's JSON output.

Only the keys the import engine needs are modelled; everything else the
compiler emits (areas, indexes, diagram relationships, UI hints beyond the
label flags) is ignored.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from seedport.config.errors import ConfigurationError
from seedport.domain.schema import (
    Column,
    EntityDescriptor,
    ForeignKey,
    InverseRelationship,
    LabelExpression,
    LabelPart,
    Schema,
)

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger(__name__)

_TRUE_TEXT = frozenset({"true", "1", "yes"})


class SchemaDocumentModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ReferenceTarget(SchemaDocumentModel):
    entity: str
    table: str | None = None
    column: str = "id"


class ColumnUI(SchemaDocumentModel):
    label: bool = False
    label2: bool = False


class ColumnDocument(SchemaDocumentModel):
    name: str
    type: str = "string"
    required: bool = False
    optional: bool = False
    unique: bool = False
    system: bool = False
    computed: object = None
    foreign_key: ReferenceTarget | None = Field(default=None, alias="foreignKey")
    aggregate_source: str | None = Field(default=None, alias="aggregateSource")
    aggregate_field: str | None = Field(default=None, alias="aggregateField")
    custom_type: str | None = Field(default=None, alias="customType")
    ui: ColumnUI | None = None
    default_value: object = Field(default=None, alias="default")
    explicit_default: str | None = Field(default=None, alias="explicitDefault")
    null_override: object = Field(default=None, alias="nullOverride")
    enum_values: list[object] = Field(default_factory=list, alias="enumValues")
    pattern: str | None = None
    media: dict[str, object] | None = None

    def resolved_default(self) -> object:
        if self.default_value is not None:
            return self.default_value
        if self.explicit_default in {None, ""}:
            return None
        return _coerce_default(self.explicit_default, self.type)

    def to_column(self, enum_values: tuple[object, ...] = ()) -> Column:
        ui = self.ui or ColumnUI()
        return Column(
            name=self.name,
            type=self.type,
            required=self.required and not self.optional,
            unique=self.unique,
            default=self.resolved_default(),
            system=self.system,
            computed=bool(self.computed),
            foreign_key=self.foreign_key.entity if self.foreign_key is not None else None,
            aggregate_source=self.aggregate_source,
            aggregate_field=self.aggregate_field,
            custom_type=self.custom_type,
            label=ui.label,
            label2=ui.label2,
            null_override=self.null_override,
            enum_values=tuple(_enum_value(v) for v in self.enum_values) or enum_values,
            pattern=self.pattern,
            media=self.media,
        )


class ForeignKeyDocument(SchemaDocumentModel):
    column: str
    display_name: str | None = Field(default=None, alias="displayName")
    references: ReferenceTarget

    def to_foreign_key(self, owner: str) -> ForeignKey:
        display_name = self.display_name or self.column.removesuffix("_id")
        target = None if self.references.entity == owner else self.references.entity
        return ForeignKey(column=self.column, display_name=display_name, target=target)


class LabelPartDocument(SchemaDocumentModel):
    type: Literal["literal", "ref", "field", "fkChain"]
    value: object = None
    name: str | None = None
    field: str | None = None
    path: str | None = None

    def to_part(self) -> LabelPart:
        match self.type:
            case "literal":
                return LabelPart.literal("" if self.value is None else str(self.value))
            case "fkChain":
                return LabelPart.fk_chain(self.path or "")
            case _:
                return LabelPart.field(self.name or self.field or "")


class LabelExpressionDocument(SchemaDocumentModel):
    type: Literal["field", "ref", "concat"]
    field: str | None = None
    name: str | None = None
    parts: list[LabelPartDocument | str] = Field(default_factory=list)

    def to_expression(self) -> LabelExpression:
        if self.type != "concat":
            return LabelExpression.single(self.field or self.name or "")
        return LabelExpression.join(*(_label_part(part) for part in self.parts))


class EnumFieldDocument(SchemaDocumentModel):
    values: list[object] = Field(default_factory=list)


class EntityDocument(SchemaDocumentModel):
    class_name: str = Field(alias="className")
    table_name: str = Field(alias="tableName")
    columns: list[ColumnDocument] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyDocument] = Field(default_factory=list, alias="foreignKeys")
    unique_keys: dict[str, list[str]] = Field(default_factory=dict, alias="uniqueKeys")
    label_expression: LabelExpressionDocument | None = Field(default=None, alias="labelExpression")
    validation_rules: dict[str, object] | None = Field(default=None, alias="validationRules")
    object_rules: list[dict[str, object]] = Field(default_factory=list, alias="objectRules")
    enum_fields: dict[str, EnumFieldDocument] = Field(default_factory=dict, alias="enumFields")

    def to_descriptor(self) -> EntityDescriptor:
        columns = tuple(
            column.to_column(self._enum_values(column.name)) for column in self.columns
        )
        return EntityDescriptor(
            class_name=self.class_name,
            table_name=self.table_name,
            columns=columns,
            foreign_keys=tuple(fk.to_foreign_key(self.class_name) for fk in self.foreign_keys),
            unique_keys={name: tuple(cols) for name, cols in self.unique_keys.items()},
            label_expression=(
                self.label_expression.to_expression() if self.label_expression else None
            ),
            validation_rules=self.validation_rules,
            object_rules=tuple(self.object_rules),
        )

    def _enum_values(self, column_name: str) -> tuple[object, ...]:
        enum_field = self.enum_fields.get(column_name)
        if enum_field is None:
            return ()
        return tuple(_enum_value(value) for value in enum_field.values)


class InverseRelationshipDocument(SchemaDocumentModel):
    entity: str
    column: str


class SchemaDocument(SchemaDocumentModel):
    entities: dict[str, EntityDocument] | list[EntityDocument]
    ordered_entities: list[str] | None = Field(default=None, alias="orderedEntities")
    inverse_relationships: dict[str, list[InverseRelationshipDocument]] | None = Field(
        default=None, alias="inverseRelationships"
    )

    def entity_documents(self) -> list[EntityDocument]:
        if isinstance(self.entities, dict):
            return list(self.entities.values())
        return list(self.entities)

    def to_schema(self) -> Schema:
        descriptors = {doc.class_name: doc.to_descriptor() for doc in self.entity_documents()}
        derived = Schema.from_entities(descriptors.values())
        if self.ordered_entities is None:
            ordered = derived.ordered_entities
        else:
            missing = [name for name in self.ordered_entities if name not in descriptors]
            if missing:
                log.warning("Ignoring unknown entities in orderedEntities: %s", ", ".join(missing))
            ordered = tuple(
                descriptors[name] for name in self.ordered_entities if name in descriptors
            )
        if self.inverse_relationships is None:
            inverse = derived.inverse_relationships
        else:
            inverse = {
                target: tuple(
                    InverseRelationship(entity=link.entity, column=link.column) for link in links
                )
                for target, links in self.inverse_relationships.items()
            }
        return Schema(ordered_entities=ordered, inverse_relationships=inverse)


def _label_part(part: LabelPartDocument | str) -> LabelPart:
    if isinstance(part, LabelPartDocument):
        return part.to_part()
    if len(part) >= 2 and part[0] == part[-1] and part[0] in {"'", '"'}:  # noqa: PLR2004
        return LabelPart.literal(part[1:-1])
    return LabelPart.field(part)


def _enum_value(value: object) -> object:
    if isinstance(value, dict):
        return value.get("internal", value.get("value"))
    return value


def _coerce_default(raw: str, column_type: str) -> object:
    try:
        match column_type:
            case "bool" | "boolean":
                return raw.strip().lower() in _TRUE_TEXT
            case "int" | "integer":
                return int(raw)
            case "number" | "real" | "float":
                return float(raw)
            case _:
                return raw
    except ValueError:
        log.warning("Default %r is not a valid %s; keeping it as text", raw, column_type)
        return raw


def parse_schema_document(data: object) -> Schema:
    try:
        document = SchemaDocument.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid schema document: {exc}") from exc
    return document.to_schema()


def load_schema_document(path: Path) -> Schema:
    """Read a compiled schema JSON file into the domain :class:`Schema`."""

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Schema document not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Schema document {path} is not valid JSON: {exc}") from exc
    schema = parse_schema_document(data)
    log.debug("Loaded schema with %d entities from %s", len(schema.ordered_entities), path)
    return schema
