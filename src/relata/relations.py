"""Relation engine: link/unlink/join operations over the storage abstraction.

One handler exists per relation field (per side of a bidirectional relation).
Every operation is a sequence of independent storage calls; nothing is
transactional, so a failure between two calls leaves the earlier call applied.
"""

from __future__ import annotations

from typing import Any, ClassVar

from loguru import logger

from relata.errors import ConfigurationError, NotFoundError, ValidationError
from relata.filters import FilterTree, and_, eq_filter, id_filter, ids_filter
from relata.mutation import Mutation
from relata.storage import DataSource, Record
from relata.types import Model, RelationConfig, RelationField, RelationShip


def find_reciprocal(field: RelationField) -> RelationField | None:
    """Find the field on the target model sharing ``field``'s relation name."""
    if not field.relation_name:
        return None
    target = field.get_relation_to()
    for candidate in target.get_relation_fields().values():
        if candidate is field:
            continue
        if candidate.relation_name == field.relation_name and candidate.relation_to is field.owner:
            return candidate
    return None


class RelationHandler:
    """Shared contract of the relation engine for one relation field."""

    relationship: ClassVar[RelationShip]

    def __init__(self, owner: Model, field: RelationField, id_field: str = "id") -> None:
        if field.relation_config is None:
            raise ConfigurationError(f"Relation field '{owner.name}.{field.name}' is not compiled")
        self.owner = owner
        self.field = field
        self.target = field.get_relation_to()
        self.config: RelationConfig = field.relation_config
        self.id_field = id_field
        self.reciprocal = find_reciprocal(field)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.owner.name}.{self.field.name} -> {self.target.name})"

    @property
    def owner_source(self) -> DataSource:
        return self.owner.data_source

    @property
    def target_source(self) -> DataSource:
        return self.target.data_source

    @property
    def foreign_key(self) -> str:
        return self.config.foreign_key

    async def create_and_link(
        self, owner_id: Any, payload: dict[str, Any], context: Any = None
    ) -> Record:
        """Create a record of the target model, then link it to the owner."""
        factory = self.target.create_mutation_factory
        created = await self.target_source.create(
            factory.create_mutation(self.target.validate_payload(payload)), context
        )
        logger.debug(f"{self!r}: created {created[self.id_field]}")
        await self.link(owner_id, created[self.id_field], context)
        return created

    async def link(self, owner_id: Any, other_id: Any, context: Any = None) -> None:
        raise NotImplementedError

    async def unlink(self, owner_id: Any, other_id: Any = None, context: Any = None) -> None:
        raise NotImplementedError

    async def delete_and_unlink(
        self, owner_id: Any, other_id: Any = None, context: Any = None
    ) -> None:
        raise NotImplementedError

    async def linked_ids(self, owner_id: Any, context: Any = None) -> list[Any]:
        raise NotImplementedError

    async def join(
        self, owner_id: Any, context: Any = None, where: FilterTree | None = None
    ) -> Record | list[Record] | None:
        raise NotImplementedError

    async def _owner_record(self, owner_id: Any, context: Any) -> Record:
        record = await self.owner_source.find_one_by_id(owner_id, context)
        if record is None:
            raise NotFoundError(self.owner.name, {self.id_field: owner_id})
        return record

    async def _set_key(
        self, model: Model, record_id: Any, value: Any, context: Any
    ) -> None:
        updated = await model.data_source.update(
            id_filter(record_id, self.id_field),
            Mutation(data={self.foreign_key: value}),
            context,
        )
        if updated is None:
            raise NotFoundError(model.name, {self.id_field: record_id})


class _ForeignKeyRelation(RelationHandler):
    """Relation stored as a scalar foreign key on one side only.

    side == "source": the owner record holds the key of its target.
    side == "target": each target record holds the key of its owner.
    """

    @property
    def owner_holds_key(self) -> bool:
        return self.config.side == "source"

    async def linked_ids(self, owner_id: Any, context: Any = None) -> list[Any]:
        if self.owner_holds_key:
            record = await self._owner_record(owner_id, context)
            value = record.get(self.foreign_key)
            return [] if value is None else [value]
        records = await self.target_source.find(eq_filter(self.foreign_key, owner_id), context)
        return [r[self.id_field] for r in records]

    async def link(self, owner_id: Any, other_id: Any, context: Any = None) -> None:
        logger.debug(f"{self!r}: link {owner_id} -> {other_id}")
        if self.owner_holds_key:
            await self._set_key(self.owner, owner_id, other_id, context)
        else:
            await self._set_key(self.target, other_id, owner_id, context)

    async def unlink(self, owner_id: Any, other_id: Any = None, context: Any = None) -> None:
        logger.debug(f"{self!r}: unlink {owner_id} -> {other_id}")
        if self.owner_holds_key:
            await self._set_key(self.owner, owner_id, None, context)
            return
        ids = [other_id] if other_id is not None else await self.linked_ids(owner_id, context)
        for target_id in ids:
            await self.target_source.update(
                and_(id_filter(target_id, self.id_field), eq_filter(self.foreign_key, owner_id)),
                Mutation(data={self.foreign_key: None}),
                context,
            )

    async def delete_and_unlink(
        self, owner_id: Any, other_id: Any = None, context: Any = None
    ) -> None:
        ids = [other_id] if other_id is not None else await self.linked_ids(owner_id, context)
        for target_id in ids:
            logger.debug(f"{self!r}: delete {target_id}")
            await self.target_source.delete(id_filter(target_id, self.id_field), context)
        if ids and self.owner_holds_key:
            await self._set_key(self.owner, owner_id, None, context)

    async def join(
        self, owner_id: Any, context: Any = None, where: FilterTree | None = None
    ) -> Record | list[Record] | None:
        if self.owner_holds_key:
            ids = await self.linked_ids(owner_id, context)
            if not ids:
                return [] if self.field.is_list() else None
            query = and_(ids_filter(ids, self.id_field), where)
            found = await self.target_source.find(query, context)
            return found if self.field.is_list() else (found[0] if found else None)
        query = and_(eq_filter(self.foreign_key, owner_id), where)
        if self.field.is_list():
            return await self.target_source.find(query, context)
        return await self.target_source.find_one(query, context)


class OneToOneRelation(_ForeignKeyRelation):
    """One-to-one: linking releases any previous partner of either record."""

    relationship = RelationShip.ONE_TO_ONE

    async def link(self, owner_id: Any, other_id: Any, context: Any = None) -> None:
        if self.owner_holds_key:
            # another owner may still point at other_id
            holders = await self.owner_source.find(eq_filter(self.foreign_key, other_id), context)
            for holder in holders:
                if holder[self.id_field] != owner_id:
                    await self._set_key(self.owner, holder[self.id_field], None, context)
        else:
            for previous in await self.linked_ids(owner_id, context):
                if previous != other_id:
                    await self._set_key(self.target, previous, None, context)
        await super().link(owner_id, other_id, context)


class OneToManyRelation(_ForeignKeyRelation):
    """One-to-many: the "many" side records hold the key of their single owner."""

    relationship = RelationShip.ONE_TO_MANY


class ManyToManyRelation(RelationHandler):
    """Many-to-many: both sides embed an array of the other side's ids.

    link/unlink issue two independent array writes, owner side first. If the
    second write fails the relation stays half linked.
    """

    relationship = RelationShip.MANY_TO_MANY

    def __init__(self, owner: Model, field: RelationField, id_field: str = "id") -> None:
        super().__init__(owner, field, id_field)
        # a symmetric self relation is declared by a single field
        reciprocal = self.reciprocal or (field if field.reciprocal is field else None)
        if reciprocal is None:
            raise ConfigurationError(
                f"Many-to-many field '{owner.name}.{field.name}' has no reciprocal field"
            )
        if reciprocal.relation_config is None:
            raise ConfigurationError(f"Relation field '{reciprocal.name}' is not compiled")
        self.reciprocal_key = reciprocal.relation_config.foreign_key

    async def linked_ids(self, owner_id: Any, context: Any = None) -> list[Any]:
        record = await self._owner_record(owner_id, context)
        return list(record.get(self.foreign_key) or [])

    async def link(self, owner_id: Any, other_id: Any, context: Any = None) -> None:
        if other_id is None:
            raise ValidationError(f"{self.field.name}: link requires a record id")
        logger.debug(f"{self!r}: link {owner_id} <-> {other_id}")
        await self.owner_source.add_reference(owner_id, self.foreign_key, other_id, context)
        await self.target_source.add_reference(other_id, self.reciprocal_key, owner_id, context)

    async def unlink(self, owner_id: Any, other_id: Any = None, context: Any = None) -> None:
        if other_id is None:
            raise ValidationError(f"{self.field.name}: unlink requires a record id")
        logger.debug(f"{self!r}: unlink {owner_id} <-> {other_id}")
        await self.owner_source.remove_reference(owner_id, self.foreign_key, other_id, context)
        await self.target_source.remove_reference(other_id, self.reciprocal_key, owner_id, context)

    async def delete_and_unlink(
        self, owner_id: Any, other_id: Any = None, context: Any = None
    ) -> None:
        if other_id is None:
            raise ValidationError(f"{self.field.name}: delete requires a record id")
        logger.debug(f"{self!r}: delete {other_id}")
        await self.target_source.delete(id_filter(other_id, self.id_field), context)
        await self.owner_source.remove_reference(owner_id, self.foreign_key, other_id, context)

    async def join(
        self, owner_id: Any, context: Any = None, where: FilterTree | None = None
    ) -> list[Record]:
        ids = await self.linked_ids(owner_id, context)
        if not ids:
            return []
        return await self.target_source.find(and_(ids_filter(ids, self.id_field), where), context)


_HANDLERS: dict[RelationShip, type[RelationHandler]] = {
    RelationShip.ONE_TO_ONE: OneToOneRelation,
    RelationShip.ONE_TO_MANY: OneToManyRelation,
    RelationShip.MANY_TO_MANY: ManyToManyRelation,
}


def create_relation(owner: Model, field: RelationField, id_field: str = "id") -> RelationHandler:
    """Build the handler for a compiled relation field."""
    if field.relationship is None:
        raise ConfigurationError(f"Relation field '{owner.name}.{field.name}' has no relation type")
    return _HANDLERS[field.relationship](owner, field, id_field)
