"""Schema compilation: relation pairing, storage binding, and hook merging.

Compiling a schema resolves every relation field to its target model, pairs
the two sides of bidirectional relations by relation name, derives where each
foreign key is stored, binds each model to its data source, and merges the
relation engine's hooks with extension hooks into one hook per model. The
merged hooks are built once here and shared by every request.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping

from loguru import logger

from relata.api import ModelApi
from relata.config import RelataConfig
from relata.errors import ConfigurationError
from relata.filters import Quantifier, WhereCompiler
from relata.hooks import Hook, MergedHook, merge_hooks
from relata.relation_hooks import create_relation_hooks
from relata.storage import DataSource
from relata.types import (
    Model,
    ModelRelation,
    ObjectField,
    RelationConfig,
    RelationField,
    RelationType,
    ScalarField,
)

DataSourceFactory = Callable[[Model], DataSource]

_UNI_TO_ONE = (RelationType.UNI_ONE_TO_ONE, RelationType.UNI_MANY_TO_ONE)


def _infer_relation_type(
    model: Model, f: RelationField, reciprocal: RelationField | None
) -> RelationType:
    """Relation kind from list-ness of both sides, checked against declared kinds."""
    if reciprocal is None:
        declared = f.relation_type
        if declared is None:
            return RelationType.UNI_ONE_TO_MANY if f.is_list() else RelationType.UNI_MANY_TO_ONE
        if declared is RelationType.BI_MANY_TO_MANY and f.is_list() and f.relation_to is model:
            return declared
        allowed = (RelationType.UNI_ONE_TO_MANY,) if f.is_list() else _UNI_TO_ONE
        if declared not in allowed:
            raise ConfigurationError(
                f"Relation field '{model.name}.{f.name}' cannot be {declared.value}"
            )
        return declared

    lists = (f.is_list(), reciprocal.is_list())
    if all(lists):
        inferred = RelationType.BI_MANY_TO_MANY
    elif any(lists):
        inferred = RelationType.BI_ONE_TO_MANY
    else:
        inferred = RelationType.BI_ONE_TO_ONE
    for side in (f, reciprocal):
        if side.relation_type is not None and side.relation_type is not inferred:
            raise ConfigurationError(
                f"Relation '{f.relation_name}' is declared {side.relation_type.value} "
                f"but its fields form {inferred.value}"
            )
    return inferred


class Schema:
    """Compiled set of models.

    Args:
        models: Model descriptors. Relation fields may name their target by string.
        data_source: Factory returning the data source of a model. Models already
            bound are left alone when it is omitted.
        extensions: Hook contributions (model name -> Hook). They are merged after
            the relation engine's own hooks, so their wrappers run inside them.
        config: Schema configuration.

    Raises:
        ConfigurationError: the models are inconsistent.
    """

    def __init__(
        self,
        models: Iterable[Model],
        *,
        data_source: DataSourceFactory | None = None,
        extensions: Iterable[Mapping[str, Hook]] = (),
        config: RelataConfig | None = None,
    ) -> None:
        self.config = config or RelataConfig()
        self.models: dict[str, Model] = {}
        for model in models:
            if model.name in self.models:
                raise ConfigurationError(f"Model '{model.name}' is declared twice")
            self.models[model.name] = model

        try:
            quantifier = Quantifier(self.config.default_quantifier)
        except ValueError:
            raise ConfigurationError(
                f"Unknown default quantifier: {self.config.default_quantifier!r}"
            ) from None
        self.compiler = WhereCompiler(quantifier)

        self._resolve_targets()
        self.relations: list[ModelRelation] = self._pair_relations()
        self._mark_array_fields()
        self._validate()
        self._bind(data_source)

        contributions: list[Mapping[str, Hook]] = []
        for relation in self.relations:
            contributions.extend(
                create_relation_hooks(relation, self.compiler, self.config.id_field)
            )
        for extension in extensions:
            unknown = sorted(set(extension) - set(self.models))
            if unknown:
                raise ConfigurationError(f"Hooks contributed for unknown models: {unknown}")
            contributions.append(extension)
        self.hooks: Mapping[str, MergedHook] = merge_hooks(contributions)

        self._apis = {
            name: ModelApi(model, self.hooks.get(name), self.config, self.compiler)
            for name, model in self.models.items()
            if not model.is_object_type()
        }
        logger.info(
            f"Compiled schema: {len(self.models)} models, {len(self.relations)} relations"
        )

    def __repr__(self) -> str:
        return f"Schema(models={list(self.models)})"

    def __getitem__(self, model_name: str) -> ModelApi:
        return self.api(model_name)

    def model(self, name: str) -> Model:
        if name not in self.models:
            raise KeyError(f"Unknown model: {name}")
        return self.models[name]

    def api(self, model_name: str) -> ModelApi:
        if model_name not in self._apis:
            raise KeyError(f"No API for model: {model_name}")
        return self._apis[model_name]

    # compile steps

    def _resolve_targets(self) -> None:
        for model in self.models.values():
            for f in model.get_relation_fields().values():
                if f.relation_to is None:
                    target = self.models.get(f.typename)
                    if target is None:
                        raise ConfigurationError(
                            f"Relation field '{model.name}.{f.name}' targets unknown model "
                            f"'{f.typename}'"
                        )
                    f.relation_to = target
                elif self.models.get(f.relation_to.name) is not f.relation_to:
                    raise ConfigurationError(
                        f"Relation field '{model.name}.{f.name}' targets a model outside "
                        "this schema"
                    )

    def _pair_relations(self) -> list[ModelRelation]:
        named: dict[str, list[RelationField]] = {}
        for model in self.models.values():
            for f in model.get_relation_fields().values():
                if f.relation_name:
                    named.setdefault(f.relation_name, []).append(f)
        for name, group in named.items():
            if len(group) > 2:
                raise ConfigurationError(
                    f"Relation '{name}' is declared on {len(group)} fields, expected at most 2"
                )

        relations: list[ModelRelation] = []
        paired: set[int] = set()
        for model in self.models.values():
            for f in model.get_relation_fields().values():
                if id(f) in paired:
                    continue
                others = [g for g in named.get(f.relation_name or "", []) if g is not f]
                reciprocal = others[0] if others else None
                if reciprocal is not None and (
                    reciprocal.relation_to is not model or f.relation_to is not reciprocal.owner
                ):
                    raise ConfigurationError(
                        f"Fields of relation '{f.relation_name}' do not point at each other"
                    )
                relations.append(self._build_relation(model, f, reciprocal))
                paired.add(id(f))
                if reciprocal is not None:
                    paired.add(id(reciprocal))
        return relations

    def _build_relation(
        self, model: Model, f: RelationField, reciprocal: RelationField | None
    ) -> ModelRelation:
        kind = _infer_relation_type(model, f, reciprocal)
        source, other = f, reciprocal

        if kind is RelationType.BI_MANY_TO_MANY:
            if reciprocal is None:
                reciprocal = other = f
            for side in {id(f): f, id(reciprocal): reciprocal}.values():
                side.relation_config = RelationConfig(
                    side.foreign_key or f"{side.name}_ids", "source"
                )
        elif kind is RelationType.BI_ONE_TO_MANY:
            assert reciprocal is not None
            source, other = (f, reciprocal) if f.is_list() else (reciprocal, f)
            # the to-one field lives on the "many" records, which hold the key
            key = other.foreign_key or source.foreign_key or f"{other.name}_id"
            other.relation_config = RelationConfig(key, "source")
            source.relation_config = RelationConfig(key, "target")
        elif kind is RelationType.BI_ONE_TO_ONE:
            assert reciprocal is not None
            if reciprocal.foreign_key and not f.foreign_key:
                source, other = reciprocal, f
            key = source.foreign_key or f"{source.name}_id"
            source.relation_config = RelationConfig(key, "source")
            other.relation_config = RelationConfig(key, "target")
        elif kind is RelationType.UNI_ONE_TO_MANY:
            f.relation_config = RelationConfig(
                f.foreign_key or f"{model.namings.singular}_{f.name}_id", "target"
            )
        else:
            f.relation_config = RelationConfig(f.foreign_key or f"{f.name}_id", "source")

        f.relation_type = kind
        if reciprocal is not None:
            reciprocal.relation_type = kind
            f.reciprocal = reciprocal
            reciprocal.reciprocal = f

        assert source.owner is not None
        target = source.get_relation_to()
        logger.debug(
            f"Relation {f.relation_name or f.name}: "
            f"{source.owner.name}.{source.name} ({kind.value})"
        )
        return ModelRelation(
            type=kind,
            source=source.owner,
            source_field=source.name,
            target=target,
            name=f.relation_name,
            target_field=other.name if other is not None else None,
        )

    def _mark_array_fields(self) -> None:
        for model in self.models.values():
            for name, f in model.fields.items():
                if isinstance(f, (ScalarField, ObjectField)) and f.is_list():
                    model.create_mutation_factory.mark_array_field(name)
                    model.update_mutation_factory.mark_array_field(name)

    def _validate(self) -> None:
        for model in self.models.values():
            if model.is_object_type():
                continue
            if not model.get_unique_fields():
                raise ConfigurationError(f"Model '{model.name}' declares no unique field")

    def _bind(self, data_source: DataSourceFactory | None) -> None:
        for model in self.models.values():
            if model.is_object_type():
                continue
            if data_source is not None:
                model.bind(data_source(model))
            elif not model.is_bound():
                raise ConfigurationError(f"Model '{model.name}' has no data source bound")

