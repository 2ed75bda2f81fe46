"""Model, Field, and relation descriptor types for Relata."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, create_model
from pydantic import ValidationError as PydanticValidationError

from relata.errors import ConfigurationError, ValidationError
from relata.mutation import MutationFactory

if TYPE_CHECKING:
    from relata.storage import DataSource


class DataModelType(str, Enum):
    """Kind of value a field holds."""

    STRING = "String"
    INT = "Int"
    FLOAT = "Float"
    BOOLEAN = "Boolean"
    ID = "ID"
    ENUM = "Enum"
    DATE_TIME = "DateTime"
    JSON = "Json"
    EMAIL = "Email"
    URL = "Url"
    CUSTOM_SCALAR = "CustomScalar"
    OBJECT = "Object"
    RELATION = "Relation"


_SCALAR_TYPES: dict[str, DataModelType] = {
    "String": DataModelType.STRING,
    "Int": DataModelType.INT,
    "Float": DataModelType.FLOAT,
    "Boolean": DataModelType.BOOLEAN,
    "ID": DataModelType.ID,
    "DateTime": DataModelType.DATE_TIME,
    "Json": DataModelType.JSON,
    "JSON": DataModelType.JSON,
    "Email": DataModelType.EMAIL,
    "Url": DataModelType.URL,
}

_PYTHON_TYPES: dict[DataModelType, Any] = {
    DataModelType.STRING: str,
    DataModelType.INT: int,
    DataModelType.FLOAT: float,
    DataModelType.BOOLEAN: bool,
    DataModelType.ENUM: str,
    DataModelType.DATE_TIME: datetime,
    DataModelType.EMAIL: str,
    DataModelType.URL: str,
}


class RelationType(str, Enum):
    """Directional relation kind between two models."""

    UNI_ONE_TO_ONE = "UNI_ONE_TO_ONE"
    UNI_MANY_TO_ONE = "UNI_MANY_TO_ONE"
    UNI_ONE_TO_MANY = "UNI_ONE_TO_MANY"
    BI_ONE_TO_ONE = "BI_ONE_TO_ONE"
    BI_ONE_TO_MANY = "BI_ONE_TO_MANY"
    BI_MANY_TO_MANY = "BI_MANY_TO_MANY"

    @property
    def bidirectional(self) -> bool:
        return self.value.startswith("BI_")

    @property
    def relationship(self) -> RelationShip:
        if self in (RelationType.UNI_ONE_TO_ONE, RelationType.BI_ONE_TO_ONE):
            return RelationShip.ONE_TO_ONE
        if self is RelationType.BI_MANY_TO_MANY:
            return RelationShip.MANY_TO_MANY
        return RelationShip.ONE_TO_MANY


class RelationShip(str, Enum):
    """Structural relation kind; selects the relation engine implementation."""

    ONE_TO_ONE = "RelationOneToOne"
    ONE_TO_MANY = "RelationOneToMany"
    MANY_TO_MANY = "RelationManyToMany"


# --- Naming helpers ---

_IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "datum": "data",
    "index": "indices",
    "status": "statuses",
    "address": "addresses",
}
_IRREGULAR_SINGULARS = {v: k for k, v in _IRREGULAR_PLURALS.items()}


def _match_case(source: str, word: str) -> str:
    return word.capitalize() if source[:1].isupper() else word


def pluralize(word: str) -> str:
    """Convert a singular English word to its plural form.

    >>> pluralize("Book")
    'Books'
    >>> pluralize("category")
    'categories'
    """
    if not word:
        return word
    lower = word.lower()
    if lower in _IRREGULAR_PLURALS:
        return _match_case(word, _IRREGULAR_PLURALS[lower])
    if lower in _IRREGULAR_SINGULARS:
        return word
    camel = re.match(r"^(.+?)([A-Z][a-z]+)$", word)
    if camel:
        return camel.group(1) + pluralize(camel.group(2))
    if re.search(r"[^aeiou]y$", lower):
        return word[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    """Convert a plural English word to its singular form.

    Words that already look singular are returned unchanged.
    """
    if not word:
        return word
    lower = word.lower()
    if lower in _IRREGULAR_SINGULARS:
        return _match_case(word, _IRREGULAR_SINGULARS[lower])
    if lower in _IRREGULAR_PLURALS:
        return word
    camel = re.match(r"^(.+?)([A-Z][a-z]+)$", word)
    if camel:
        return camel.group(1) + singularize(camel.group(2))
    if lower.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if re.search(r"(ss|us|is)$", lower):
        return word
    if re.search(r"(xes|zes|ches|shes|sses)$", lower):
        return word[:-2]
    if lower.endswith("s"):
        return word[:-1]
    return word


@dataclass(frozen=True)
class Namings:
    """Naming conventions derived from a model name."""

    singular: str
    plural: str
    capital_singular: str
    capital_plural: str

    @classmethod
    def from_name(cls, name: str, plural: str | None = None) -> Namings:
        singular = singularize(name)
        plural = plural or pluralize(singular)
        return cls(
            singular=singular[:1].lower() + singular[1:],
            plural=plural[:1].lower() + plural[1:],
            capital_singular=singular[:1].upper() + singular[1:],
            capital_plural=plural[:1].upper() + plural[1:],
        )


# --- Fields ---


class Field:
    """Base field descriptor.

    Concrete fields are ScalarField, EnumField, ObjectField and RelationField.
    """

    def __init__(
        self,
        typename: str,
        *,
        list: bool = False,
        non_null: bool = False,
        item_non_null: bool = False,
        unique: bool = False,
        auto_generated: bool = False,
        updated_at: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.typename = typename
        self.list = list
        self.non_null = non_null
        self.item_non_null = item_non_null
        self.unique = unique
        self.auto_generated = auto_generated
        self.updated_at = updated_at
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.name: str = ""

    @property
    def type(self) -> DataModelType:
        raise NotImplementedError

    def is_scalar(self) -> bool:
        return False

    def is_list(self) -> bool:
        return self.list

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.typename!r}, list={self.list})"


class ScalarField(Field):
    """Built-in or custom scalar field."""

    @property
    def type(self) -> DataModelType:
        return _SCALAR_TYPES.get(self.typename, DataModelType.CUSTOM_SCALAR)

    def is_scalar(self) -> bool:
        return True


class EnumField(ScalarField):
    """Scalar field restricted to a set of enum values."""

    def __init__(self, typename: str, values: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(typename, **kwargs)
        self.values = list(values or [])

    @property
    def type(self) -> DataModelType:
        return DataModelType.ENUM


class ObjectField(Field):
    """Embedded object (or list of objects) with its own nested fields."""

    def __init__(self, typename: str, fields: dict[str, Field], **kwargs: Any) -> None:
        super().__init__(typename, **kwargs)
        self.fields = dict(fields)
        for name, nested in self.fields.items():
            nested.name = name

    @property
    def type(self) -> DataModelType:
        return DataModelType.OBJECT

    def get_field(self, name: str) -> Field | None:
        return self.fields.get(name)


@dataclass(frozen=True)
class RelationConfig:
    """Side-specific storage metadata for a relation field.

    side is "source" when the foreign key lives on the field's own record, and
    "target" when it lives on the related record.
    """

    foreign_key: str
    side: str


class RelationField(Field):
    """Field referencing one or many records of another model."""

    def __init__(
        self,
        to: str | Model,
        *,
        relation_name: str | None = None,
        relation_type: RelationType | None = None,
        foreign_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        typename = to if isinstance(to, str) else to.name
        super().__init__(typename, **kwargs)
        self._to = to
        self.relation_name = relation_name
        self.relation_type = relation_type
        self.foreign_key = foreign_key
        self.relation_to: Model | None = to if isinstance(to, Model) else None
        self.relation_config: RelationConfig | None = None
        self.reciprocal: RelationField | None = None
        self.owner: Model | None = None

    @property
    def type(self) -> DataModelType:
        return DataModelType.RELATION

    @property
    def relationship(self) -> RelationShip | None:
        return self.relation_type.relationship if self.relation_type else None

    def get_relation_to(self) -> Model:
        if self.relation_to is None:
            raise ConfigurationError(f"Relation field '{self.name}' is not bound to a model")
        return self.relation_to


@dataclass
class ModelRelation:
    """A named relation pairing two models."""

    type: RelationType
    source: Model
    source_field: str
    target: Model
    name: str | None = None
    target_field: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def relationship(self) -> RelationShip:
        return self.type.relationship


# --- Models ---


def _build_payload_model(model_name: str, fields: dict[str, Field]) -> type[BaseModel]:
    """Build a pydantic model validating the non-list scalar fields of a model."""
    pydantic_fields: dict[str, Any] = {}
    for name, f in fields.items():
        if not f.is_scalar() or f.is_list():
            continue
        ann = _PYTHON_TYPES.get(f.type, Any)
        pydantic_fields[name] = (Optional[ann], None)
    return create_model(model_name, **pydantic_fields)  # type: ignore[call-overload]


class Model:
    """Named entity type with an ordered field schema and a storage binding."""

    def __init__(
        self,
        name: str,
        fields: dict[str, Field],
        *,
        plural: str | None = None,
        source_key: str | None = None,
        object_type: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.fields: dict[str, Field] = dict(fields)
        self.namings = Namings.from_name(name, plural)
        self.source_key = source_key or self.namings.plural
        self.object_type = object_type
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.create_mutation_factory = MutationFactory()
        self.update_mutation_factory = MutationFactory()
        self._data_source: DataSource | None = None
        self._payload_model: type[BaseModel] | None = None
        for field_name, f in self.fields.items():
            f.name = field_name
            if isinstance(f, RelationField):
                f.owner = self

    def __repr__(self) -> str:
        return f"Model({self.name!r})"

    def get_field(self, name: str) -> Field | None:
        return self.fields.get(name)

    def get_unique_fields(self) -> dict[str, Field]:
        return {name: f for name, f in self.fields.items() if f.unique}

    def get_relation_fields(self) -> dict[str, RelationField]:
        return {name: f for name, f in self.fields.items() if isinstance(f, RelationField)}

    def is_object_type(self) -> bool:
        return self.object_type

    # storage binding

    def bind(self, data_source: DataSource) -> None:
        self._data_source = data_source

    def is_bound(self) -> bool:
        return self._data_source is not None

    @property
    def data_source(self) -> DataSource:
        if self._data_source is None:
            raise ConfigurationError(f"Model '{self.name}' has no data source bound")
        return self._data_source

    # payloads

    @property
    def payload_model(self) -> type[BaseModel]:
        if self._payload_model is None:
            self._payload_model = _build_payload_model(
                f"_{self.namings.capital_singular}Payload", self.fields
            )
        return self._payload_model

    def validate_payload(self, data: dict[str, Any]) -> dict[str, Any]:
        """Coerce the non-list scalar values of ``data`` through the payload model.

        Keys that are not plain scalars pass through untouched.
        """
        payload_fields = self.payload_model.model_fields
        scalars = {k: v for k, v in data.items() if k in payload_fields}
        try:
            validated = self.payload_model.model_validate(scalars)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid payload for {self.name}: {e}") from e
        return {**data, **validated.model_dump(exclude_unset=True)}
