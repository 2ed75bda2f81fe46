"""Filter tree types and the where-input compiler.

A where input is a flat mapping such as::

    {"name": "Ben", "age_gt": 20, "location__lat_lt": 50.0,
     "books": {"some": {"title_contains": "Python"}},
     "OR": [{"status": "OK"}, {"status_in": ["NEW"]}]}

``compile_where`` turns it into a FilterTree that storage backends evaluate
without looking at the schema again.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from relata.errors import ConfigurationError, ValidationError
from relata.types import Field, Model, ObjectField, RelationField, RelationShip, RelationType

UNDERSCORE = "_"
DOUBLE_UNDERSCORE = "__"
ELEMENT_MATCH = "elementMatch"


class Operator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"
    NOT_CONTAINS = "notcontains"
    BETWEEN = "between"
    OBJECT = "object"
    # list operators, produced by the list grammar only
    ALL = "all"
    NOT_IN = "notIn"
    SIZE = "size"
    ELEMENT_MATCH = "elementMatch"


# Operators accepted as a `<field>_<operator>` key suffix
SUFFIX_OPERATORS: dict[str, Operator] = {
    op.value: op
    for op in (
        Operator.EQ,
        Operator.NEQ,
        Operator.GT,
        Operator.GTE,
        Operator.LT,
        Operator.LTE,
        Operator.IN,
        Operator.CONTAINS,
        Operator.NOT_CONTAINS,
        Operator.BETWEEN,
        Operator.OBJECT,
    )
}

# Scalar list grammar: input key -> storage operator
LIST_SCALAR_OPERATORS: dict[str, Operator] = {
    "has": Operator.ALL,
    "hasNot": Operator.NOT_IN,
    "gt": Operator.GT,
    "gte": Operator.GTE,
    "lt": Operator.LT,
    "lte": Operator.LTE,
    "size": Operator.SIZE,
    "elementMatch": Operator.ELEMENT_MATCH,
}


class Quantifier(str, Enum):
    SOME = "some"
    NONE = "none"
    EVERY = "every"


class FilterNode:
    """Base class for compiled filter nodes."""

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {_plain(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class FieldFilter(FilterNode):
    """Leaf predicate on a (possibly dotted) field path."""

    field: str
    operator: Operator
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": _plain(self.value)}


@dataclass
class ElementMatch(FilterNode):
    """Predicate evaluated jointly against each element of an object list."""

    field: str
    filter: FilterTree

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "elementMatch": self.filter.to_dict()}


@dataclass(frozen=True)
class RelationWhereConfig:
    """Join metadata carried by a relation filter."""

    foreign_key: str
    source: str
    target: str
    side: str
    list: bool
    ship: RelationShip
    type: RelationType
    quantifier: Quantifier | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "foreign_key": self.foreign_key,
            "source": self.source,
            "target": self.target,
            "side": self.side,
            "list": self.list,
            "ship": self.ship.value,
            "type": self.type.value,
            "quantifier": self.quantifier.value if self.quantifier else None,
        }


@dataclass
class RelationFilter(FilterNode):
    """Predicate on the records reached through a relation field."""

    field: str
    filter: FilterTree
    source_key: str
    target_key: str
    relation: RelationWhereConfig

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "filter": self.filter.to_dict(),
            "source_key": self.source_key,
            "target_key": self.target_key,
            "relation": self.relation.to_dict(),
        }


@dataclass
class FilterTree(FilterNode):
    """AND/OR combination of filter nodes. An empty AND matches everything."""

    op: str = "AND"
    children: list[FilterNode] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.children

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "children": [c.to_dict() for c in self.children]}


# --- helpers for building trees by hand ---


def eq_filter(field_name: str, value: Any) -> FilterTree:
    return FilterTree("AND", [FieldFilter(field_name, Operator.EQ, value)])


def id_filter(record_id: Any, id_field: str = "id") -> FilterTree:
    return eq_filter(id_field, record_id)


def ids_filter(ids: list[Any], id_field: str = "id") -> FilterTree:
    return FilterTree("AND", [FieldFilter(id_field, Operator.IN, list(ids))])


def and_(*nodes: FilterNode | None) -> FilterTree:
    """AND-combine nodes, skipping None and empty trees."""
    children = [
        n for n in nodes if n is not None and not (isinstance(n, FilterTree) and n.is_empty())
    ]
    return FilterTree("AND", children)


# --- compiler ---


def _resolve_path(fields: Mapping[str, Field], path: str) -> Field | None:
    """Resolve a dotted path through nested object fields."""
    current: Mapping[str, Field] = fields
    found: Field | None = None
    for segment in path.split("."):
        found = current.get(segment)
        if found is None:
            return None
        current = found.fields if isinstance(found, ObjectField) else {}
    return found


def split_key(key: str, fields: Mapping[str, Field]) -> tuple[str, Operator]:
    """Split ``price_gt`` into ``("price", Operator.GT)``.

    ``obj__price_gt`` addresses a nested object field and yields ``"obj.price"``.
    A key naming an existing field is an implicit ``eq``, so snake_case field
    names are never mistaken for an operator suffix.
    """
    path = key.replace(DOUBLE_UNDERSCORE, ".")
    if _resolve_path(fields, path) is not None:
        return path, Operator.EQ

    last_underscore = path.rfind(UNDERSCORE)
    if last_underscore < 0:
        return path, Operator.EQ

    op_name = path[last_underscore + 1 :]
    operator = SUFFIX_OPERATORS.get(op_name)
    if operator is None:
        raise ValidationError(f"Operator {op_name} no support")
    return path[:last_underscore], operator


def _claim(seen: set[str], path: str, operator: Operator) -> None:
    # one predicate per scalar path, however the key was spelled
    if path in seen:
        raise ValidationError(f"There can be only one input field named {path}_{operator.value}")
    seen.add(path)


class WhereCompiler:
    """Compiles where inputs against a model's fields."""

    def __init__(self, default_quantifier: Quantifier = Quantifier.SOME) -> None:
        self.default_quantifier = default_quantifier

    def compile(self, where: Mapping[str, Any] | None, model: Model) -> FilterTree:
        tree = self._compile(where or {}, model.fields, model)
        logger.debug(f"Compiled where for {model.name}: {tree}")
        return tree

    def _compile(
        self, where: Mapping[str, Any], fields: Mapping[str, Field], model: Model
    ) -> FilterTree:
        if not isinstance(where, Mapping):
            raise ValidationError(f"Where input for {model.name} must be an object")

        children: list[FilterNode] = []
        seen: set[str] = set()
        for key, value in where.items():
            if key in ("AND", "OR"):
                nested = value if isinstance(value, (list, tuple)) else [value]
                children.append(
                    FilterTree(key, [self._compile(w, fields, model) for w in nested])
                )
                continue

            path, operator = split_key(key, fields)
            head, _, rest = path.partition(".")
            f = fields.get(head)
            if f is None:
                raise ValidationError(f"Unknown field '{head}' in where input of {model.name}")

            if isinstance(f, RelationField) and not rest:
                if operator is not Operator.EQ:
                    raise ValidationError(
                        f"Operator {operator.value} no support on relation {head}"
                    )
                children.append(self._compile_relation(head, f, value, model))
                continue

            if rest:
                # obj__sub[_op]: already flattened to a dot path
                if not isinstance(f, ObjectField):
                    raise ValidationError(f"Field '{head}' of {model.name} is not an object field")
                children.extend(self._flatten_object(head, f, rest, operator, value, seen))
                continue
            if isinstance(f, ObjectField):
                if operator is not Operator.EQ:
                    raise ValidationError(f"Operator {operator.value} no support on object {head}")
                children.extend(self._compile_object(head, f, value, model, seen))
                continue

            _claim(seen, path, operator)
            if f.is_list():
                if operator is not Operator.EQ:
                    raise ValidationError(f"Operator {operator.value} no support on list {head}")
                node = self._compile_scalar_list(head, f, value)
                if node is not None:
                    children.append(node)
            else:
                children.append(self._compile_scalar(head, operator, value))
        return FilterTree("AND", children)

    def _compile_scalar(self, name: str, operator: Operator, value: Any) -> FieldFilter:
        if operator is Operator.BETWEEN:
            if not isinstance(value, Mapping) or "from" not in value or "to" not in value:
                raise ValidationError(f"{name}_between requires both 'from' and 'to'")
            value = {"from": value["from"], "to": value["to"]}
        elif operator is Operator.IN and not isinstance(value, (list, tuple)):
            raise ValidationError(f"{name}_in requires a list")
        return FieldFilter(name, operator, value)

    def _compile_scalar_list(self, name: str, f: Field, value: Any) -> FieldFilter | None:
        if not isinstance(value, Mapping):
            raise ValidationError(f"Filter on list field '{name}' must be an object")
        if not value:
            return None
        if len(value) > 1:
            raise ValidationError(
                f"There can be only one input field named FilterScalar{f.typename}List"
            )
        key, val = next(iter(value.items()))
        operator, mapped = self._map_list_scalar(key, val)
        return FieldFilter(name, operator, mapped)

    def _map_list_scalar(self, key: str, value: Any) -> tuple[Operator, Any]:
        operator = LIST_SCALAR_OPERATORS.get(key)
        if operator is None:
            raise ValidationError(f"Operator {key} no support on list fields")
        if operator in (Operator.ALL, Operator.NOT_IN):
            return operator, list(value or [])
        if operator is Operator.ELEMENT_MATCH:
            if not isinstance(value, Mapping):
                raise ValidationError("elementMatch requires an object")
            return operator, dict(self._map_list_scalar(k, v) for k, v in value.items())
        return operator, value

    def _compile_object(
        self, name: str, f: ObjectField, value: Any, model: Model, seen: set[str]
    ) -> list[FilterNode]:
        if not isinstance(value, Mapping):
            raise ValidationError(f"Filter on object field '{name}' must be an object")
        nodes: list[FilterNode] = []
        for key, val in value.items():
            if key == ELEMENT_MATCH:
                if not f.is_list():
                    raise ValidationError(f"elementMatch requires a list field, '{name}' is not")
                nodes.append(ElementMatch(name, self._compile(val, f.fields, model)))
                continue
            sub_path, operator = split_key(key, f.fields)
            nodes.extend(self._flatten_object(name, f, sub_path, operator, val, seen))
        return nodes

    def _flatten_object(
        self,
        prefix: str,
        f: ObjectField,
        sub_path: str,
        operator: Operator,
        value: Any,
        seen: set[str],
    ) -> list[FilterNode]:
        sub = _resolve_path(f.fields, sub_path)
        if sub is None:
            raise ValidationError(f"Unknown field '{sub_path}' in object {f.typename}")
        path = f"{prefix}.{sub_path}"
        if isinstance(sub, ObjectField) and isinstance(value, Mapping) and operator is Operator.EQ:
            nodes: list[FilterNode] = []
            for key, val in value.items():
                nested_path, nested_op = split_key(key, sub.fields)
                nodes.extend(self._flatten_object(path, sub, nested_path, nested_op, val, seen))
            return nodes
        _claim(seen, path, operator)
        return [self._compile_scalar(path, operator, value)]

    def _compile_relation(
        self, name: str, f: RelationField, value: Any, model: Model
    ) -> RelationFilter:
        if not isinstance(value, Mapping):
            raise ValidationError(f"Filter on relation '{name}' must be an object")
        target = f.get_relation_to()
        if f.relation_config is None or f.relation_type is None:
            raise ConfigurationError(f"Relation field '{name}' of {model.name} is not compiled")

        quantifier: Quantifier | None = None
        nested: Mapping[str, Any] = value
        if f.is_list():
            present = [q for q in Quantifier if q.value in value]
            if present and len(value) > 1:
                raise ValidationError(
                    f"There can be only one input field named "
                    f"Filter{target.namings.capital_singular}"
                )
            if present:
                quantifier = present[0]
                nested = value[quantifier.value] or {}
            else:
                quantifier = self.default_quantifier

        return RelationFilter(
            field=name,
            filter=self._compile(nested, target.fields, target),
            source_key=model.source_key,
            target_key=target.source_key,
            relation=RelationWhereConfig(
                foreign_key=f.relation_config.foreign_key,
                source=model.name,
                target=target.name,
                side=f.relation_config.side,
                list=f.is_list(),
                ship=f.relation_type.relationship,
                type=f.relation_type,
                quantifier=quantifier,
            ),
        )


_default_compiler = WhereCompiler()


def compile_where(where: Mapping[str, Any] | None, model: Model) -> FilterTree:
    """Compile a where input with the default quantifier (``some``)."""
    return _default_compiler.compile(where, model)


def compile_unique_where(where: Mapping[str, Any] | None, model: Model) -> FilterTree:
    """Compile a where-unique input: every key must name a unique field."""
    if not where:
        raise ValidationError(
            f"You provided an invalid argument for the where selector on "
            f"{model.namings.capital_singular}. "
            "Please provide exactly one unique field and value."
        )
    children: list[FilterNode] = []
    for key, value in where.items():
        f = model.get_field(key)
        if f is None or not f.unique:
            raise ValidationError(
                f"Field '{key}' is not a unique field of {model.namings.capital_singular}"
            )
        children.append(FieldFilter(key, Operator.EQ, value))
    return FilterTree("AND", children)
