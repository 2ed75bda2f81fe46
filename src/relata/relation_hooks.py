"""Hooks the relation engine contributes for every compiled relation.

A relation field in a create/update payload carries a nested input::

    # to-many
    {"friends": {"create": [{...}], "connect": [{"id": "a"}],
                 "disconnect": [{"id": "b"}], "delete": [{"id": "c"}]}}
    # to-one
    {"author": {"connect": {"email": "a@b.c"}}}
    {"author": {"disconnect": True}}

The wrappers strip the field from the payload, let the owner record be
written, then apply the nested operations through the relation engine.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable, Mapping
from typing import Any

from loguru import logger

from relata.errors import NotFoundError, RelationBatchError, ValidationError
from relata.filters import WhereCompiler, compile_unique_where
from relata.hooks import CreateContext, Hook, Proceed, UpdateContext
from relata.relations import RelationHandler, create_relation
from relata.types import Model, ModelRelation

CREATE_ORDER = ("connect", "create")
UPDATE_ORDER = ("connect", "create", "disconnect", "delete")


async def run_batch(label: str, operations: Iterable[Awaitable[Any]]) -> list[Any]:
    """Run relation operations concurrently.

    Every operation runs to completion. If any failed, the successful ones stay
    applied and a RelationBatchError carrying all failures is raised.
    """
    results = await asyncio.gather(*operations, return_exceptions=True)
    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        succeeded = len(results) - len(errors)
        logger.warning(f"{label}: {len(errors)} of {len(results)} relation operations failed")
        raise RelationBatchError(errors, succeeded)
    return list(results)


async def resolve_ids(
    model: Model, wheres: Iterable[Mapping[str, Any]], context: Any, id_field: str = "id"
) -> list[Any]:
    """Look up the ids of the records selected by unique-where inputs.

    Every lookup runs to completion before the first failure is raised.
    """

    async def lookup(where: Mapping[str, Any]) -> Any:
        record = await model.data_source.find_one(compile_unique_where(where, model), context)
        if record is None:
            raise NotFoundError(model.name, where)
        return record[id_field]

    results = await asyncio.gather(*(lookup(w) for w in wheres), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


class RelationFieldHook:
    """Create/update wrappers and the field resolver for one relation field."""

    def __init__(
        self,
        handler: RelationHandler,
        compiler: WhereCompiler | None = None,
        id_field: str = "id",
    ) -> None:
        self.handler = handler
        self.field_name = handler.field.name
        self.compiler = compiler or WhereCompiler()
        self.id_field = id_field

    @property
    def label(self) -> str:
        return f"{self.handler.owner.name}.{self.field_name}"

    def to_hook(self) -> Hook:
        return Hook(
            wrap_create=self.wrap_create,
            wrap_update=self.wrap_update,
            resolve_fields={self.field_name: self.resolve},
        )

    def _pop_input(self, ctx: CreateContext | UpdateContext) -> Mapping[str, Any] | None:
        if self.field_name not in ctx.data:
            return None
        nested = ctx.data[self.field_name]
        ctx.data = {k: v for k, v in ctx.data.items() if k != self.field_name}
        if nested is None:
            return None
        if not isinstance(nested, Mapping):
            raise ValidationError(f"Relation input for {self.label} must be an object")
        return nested

    async def wrap_create(self, ctx: CreateContext, proceed: Proceed) -> Any:
        nested = self._pop_input(ctx)
        if nested is not None:
            self._check_keys(nested, CREATE_ORDER)
        result = await proceed()
        if nested is not None and ctx.response is not None:
            await self.apply(ctx.response[self.id_field], nested, CREATE_ORDER, ctx.request_context)
        return result

    async def wrap_update(self, ctx: UpdateContext, proceed: Proceed) -> Any:
        nested = self._pop_input(ctx)
        if nested is not None:
            self._check_keys(nested, UPDATE_ORDER)
        result = await proceed()
        if nested is not None and ctx.response is not None:
            await self.apply(ctx.response[self.id_field], nested, UPDATE_ORDER, ctx.request_context)
        return result

    def _check_keys(self, nested: Mapping[str, Any], allowed: tuple[str, ...]) -> None:
        unknown = sorted(set(nested) - set(allowed))
        if unknown:
            raise ValidationError(
                f"Relation input for {self.label} does not support: {', '.join(unknown)}"
            )

    async def apply(
        self, owner_id: Any, nested: Mapping[str, Any], order: tuple[str, ...], context: Any
    ) -> None:
        """Apply the nested relation operations to ``owner_id`` in ``order``."""
        for action in order:
            if action not in nested:
                continue
            logger.debug(f"{self.label}: {action} for {owner_id}")
            if self.handler.field.is_list():
                await self._apply_many(action, owner_id, nested[action], context)
            else:
                await self._apply_one(action, owner_id, nested[action], context)

    async def _apply_many(self, action: str, owner_id: Any, value: Any, context: Any) -> None:
        handler = self.handler
        label = f"{self.label}.{action}"
        if action == "create":
            await run_batch(
                label, (handler.create_and_link(owner_id, p, context) for p in _as_list(value))
            )
            return
        ids = await resolve_ids(handler.target, _as_list(value), context, self.id_field)
        if action == "connect":
            await run_batch(label, (handler.link(owner_id, i, context) for i in ids))
        elif action == "disconnect":
            await run_batch(label, (handler.unlink(owner_id, i, context) for i in ids))
        else:
            await run_batch(label, (handler.delete_and_unlink(owner_id, i, context) for i in ids))

    async def _apply_one(self, action: str, owner_id: Any, value: Any, context: Any) -> None:
        handler = self.handler
        if action == "create":
            if not isinstance(value, Mapping):
                raise ValidationError(f"{self.label}.create requires an object")
            await handler.create_and_link(owner_id, dict(value), context)
        elif action == "connect":
            if not isinstance(value, Mapping):
                raise ValidationError(f"{self.label}.connect requires an object")
            (other_id,) = await resolve_ids(handler.target, [value], context, self.id_field)
            await handler.link(owner_id, other_id, context)
        elif action == "disconnect":
            if value is True:
                await handler.unlink(owner_id, None, context)
        elif value is True:
            await handler.delete_and_unlink(owner_id, None, context)

    async def resolve(
        self, record: Mapping[str, Any], args: Mapping[str, Any] | None, context: Any
    ) -> Any:
        where = (args or {}).get("where")
        compiled = self.compiler.compile(where, self.handler.target) if where else None
        return await self.handler.join(record[self.id_field], context, where=compiled)


def create_relation_hooks(
    relation: ModelRelation,
    compiler: WhereCompiler | None = None,
    id_field: str = "id",
) -> list[dict[str, Hook]]:
    """Build one hook contribution per side of ``relation``."""
    sides = [(relation.source, relation.source_field)]
    if relation.target_field and not (
        relation.target is relation.source and relation.target_field == relation.source_field
    ):
        sides.append((relation.target, relation.target_field))

    contributions: list[dict[str, Hook]] = []
    for model, field_name in sides:
        field = model.get_relation_fields()[field_name]
        handler = create_relation(model, field, id_field)
        contributions.append({model.name: RelationFieldHook(handler, compiler, id_field).to_hook()})
    return contributions
