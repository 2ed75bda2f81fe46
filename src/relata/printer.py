"""Readable schema summary and a serialisable schema export."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from relata.types import EnumField, Field, ObjectField, RelationField, RelationType

if TYPE_CHECKING:
    from relata.schema import Schema

RELATION_LABELS: dict[RelationType, str] = {
    RelationType.UNI_ONE_TO_ONE: "uni-1-to-1",
    RelationType.UNI_MANY_TO_ONE: "uni-*-to-1",
    RelationType.UNI_ONE_TO_MANY: "uni-1-to-*",
    RelationType.BI_ONE_TO_ONE: "bi-1-to-1",
    RelationType.BI_ONE_TO_MANY: "bi-1-to-*",
    RelationType.BI_MANY_TO_MANY: "bi-*-to-*",
}


def type_notation(f: Field) -> str:
    """GraphQL-style notation of a field type, e.g. ``[String!]!``."""
    notation = f.typename
    if f.is_list():
        notation = f"[{notation}!]" if f.item_non_null else f"[{notation}]"
    if f.non_null:
        notation += "!"
    return notation


def _field_line(f: Field) -> str:
    line = f"{f.name}: {type_notation(f)}"
    markers = []
    if f.unique:
        markers.append("@unique")
    if f.auto_generated:
        markers.append("@autoGen")
    if f.updated_at:
        markers.append("@updatedAt")
    if isinstance(f, RelationField) and f.relation_name:
        markers.append(f'@relation(name: "{f.relation_name}")')
    if markers:
        line += " " + " ".join(markers)
    return line


def format_schema(schema: Schema) -> str:
    """Render every model and relation of a compiled schema as text."""
    lines: list[str] = []
    for model in schema.models.values():
        kind = "Object" if model.is_object_type() else "Model"
        lines.append(f"{kind} {model.name} (plural: {model.namings.capital_plural})")
        for f in model.fields.values():
            lines.append(f"  {_field_line(f)}")
            if isinstance(f, ObjectField):
                for nested in f.fields.values():
                    lines.append(f"    {_field_line(nested)}")
        lines.append("")

    if schema.relations:
        lines.append("Relations")
        for rel in schema.relations:
            left = f"{rel.source.name}.{rel.source_field}"
            right = f"{rel.target.name}.{rel.target_field}" if rel.target_field else rel.target.name
            name = f" '{rel.name}'" if rel.name else ""
            lines.append(f"  [{RELATION_LABELS[rel.type]}]{name} {left} -> {right}")
    return "\n".join(lines).rstrip() + "\n"


def _export_field(f: Field) -> dict[str, Any]:
    data: dict[str, Any] = {
        "type": f.type.value,
        "typename": f.typename,
        "list": f.is_list(),
        "non_null": f.non_null,
    }
    for flag in ("unique", "auto_generated", "updated_at"):
        if getattr(f, flag):
            data[flag] = True
    if isinstance(f, EnumField):
        data["values"] = list(f.values)
    if isinstance(f, ObjectField):
        data["fields"] = {name: _export_field(nested) for name, nested in f.fields.items()}
    if isinstance(f, RelationField):
        data["relation"] = {
            "name": f.relation_name,
            "type": f.relation_type.value if f.relation_type else None,
            "foreign_key": f.relation_config.foreign_key if f.relation_config else None,
            "side": f.relation_config.side if f.relation_config else None,
        }
    if f.metadata:
        data["metadata"] = dict(f.metadata)
    return data


def export_schema(schema: Schema) -> dict[str, Any]:
    """Plain-data export of a compiled schema, suitable for JSON or YAML."""
    models: dict[str, Any] = {}
    for model in schema.models.values():
        models[model.name] = {
            "plural": model.namings.capital_plural,
            "source_key": model.source_key,
            "object_type": model.is_object_type(),
            "fields": {name: _export_field(f) for name, f in model.fields.items()},
        }
    relations = [
        {
            "name": rel.name,
            "type": rel.type.value,
            "relationship": rel.relationship.value,
            "source": rel.source.name,
            "source_field": rel.source_field,
            "target": rel.target.name,
            "target_field": rel.target_field,
        }
        for rel in schema.relations
    ]
    return {"models": models, "relations": relations}
