"""Per-model mutation and query entry points."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from relata.config import RelataConfig
from relata.errors import NotFoundError
from relata.filters import WhereCompiler, compile_unique_where, id_filter
from relata.hooks import Chain, CreateContext, DeleteContext, MergedHook, Terminal, UpdateContext
from relata.storage import DataSource, Record
from relata.types import DataModelType, Model


async def _run(chain: Chain | None, ctx: Any, terminal: Terminal) -> Any:
    if chain is None:
        await terminal(ctx)
    else:
        await chain(ctx, terminal)
    return ctx.response


class ModelApi:
    """Create/update/delete/find for one model, routed through its merged hook.

    Args:
        model: Compiled model bound to a data source.
        hook: Merged hook of the model, or None when nothing was contributed.
        config: Schema configuration.
        compiler: Where compiler shared by the schema.
    """

    def __init__(
        self,
        model: Model,
        hook: MergedHook | None = None,
        config: RelataConfig | None = None,
        compiler: WhereCompiler | None = None,
    ) -> None:
        self.model = model
        self.hook = hook or MergedHook()
        self.config = config or RelataConfig()
        self.compiler = compiler or WhereCompiler()

    def __repr__(self) -> str:
        return f"ModelApi({self.model.name!r})"

    @property
    def data_source(self) -> DataSource:
        return self.model.data_source

    @property
    def id_field(self) -> str:
        return self.config.id_field

    def _stamp_updated_at(self, data: dict[str, Any]) -> dict[str, Any]:
        now = datetime.now(timezone.utc)
        for name, f in self.model.fields.items():
            if f.updated_at and f.type is DataModelType.DATE_TIME:
                data[name] = now
        return data

    async def _find_unique(self, where: Mapping[str, Any], request_context: Any) -> Record:
        record = await self.data_source.find_one(
            compile_unique_where(where, self.model), request_context
        )
        if record is None:
            raise NotFoundError(self.model.name, dict(where))
        return record

    # mutations

    async def create(self, data: Mapping[str, Any], request_context: Any = None) -> Record:
        """Create a record; nested relation inputs are applied after the write."""
        payload = dict(data)
        if self.config.touch_updated_at_on_create:
            self._stamp_updated_at(payload)
        ctx = CreateContext(data=payload, request_context=request_context)

        async def terminal(c: CreateContext) -> None:
            mutation = self.model.create_mutation_factory.create_mutation(
                self.model.validate_payload(c.data)
            )
            c.response = await self.data_source.create(mutation, c.request_context)

        return await _run(self.hook.wrap_create, ctx, terminal)

    async def update(
        self, where: Mapping[str, Any], data: Mapping[str, Any], request_context: Any = None
    ) -> Record:
        """Update the record selected by a unique where.

        Raises:
            ValidationError: ``where`` is empty or names a non-unique field.
            NotFoundError: no record matches ``where``.
        """
        found = await self._find_unique(where, request_context)
        by_id = id_filter(found[self.id_field], self.id_field)
        ctx = UpdateContext(
            where=dict(where),
            data=self._stamp_updated_at(dict(data)),
            request_context=request_context,
        )

        async def terminal(c: UpdateContext) -> None:
            mutation = self.model.update_mutation_factory.create_mutation(
                self.model.validate_payload(c.data)
            )
            c.response = await self.data_source.update(by_id, mutation, c.request_context)

        return await _run(self.hook.wrap_update, ctx, terminal)

    async def delete(self, where: Mapping[str, Any], request_context: Any = None) -> Record:
        """Delete the record selected by a unique where and return it.

        Related records and references held by other records are left alone.
        """
        found = await self._find_unique(where, request_context)
        by_id = id_filter(found[self.id_field], self.id_field)
        ctx = DeleteContext(where=dict(where), request_context=request_context)

        async def terminal(c: DeleteContext) -> None:
            await self.data_source.delete(by_id, c.request_context)
            c.response = found

        return await _run(self.hook.wrap_delete, ctx, terminal)

    # queries

    async def find_one(
        self, where: Mapping[str, Any], request_context: Any = None
    ) -> Record | None:
        return await self.data_source.find_one(
            compile_unique_where(where, self.model), request_context
        )

    async def find(
        self, where: Mapping[str, Any] | None = None, request_context: Any = None
    ) -> list[Record]:
        tree = self.compiler.compile(where, self.model)
        return await self.data_source.find(tree, request_context)

    async def resolve_field(
        self,
        record: Record,
        field_name: str,
        args: Mapping[str, Any] | None = None,
        request_context: Any = None,
    ) -> Any:
        """Resolve one field of ``record``, using a contributed resolver if any."""
        resolver = self.hook.resolve_fields.get(field_name)
        if resolver is None:
            return record.get(field_name)
        return await resolver(record, dict(args or {}), request_context)

    async def resolve(
        self, record: Record, field_names: list[str], request_context: Any = None
    ) -> Record:
        """Return a copy of ``record`` with the named fields resolved."""
        resolved = dict(record)
        for name in field_names:
            resolved[name] = await self.resolve_field(record, name, None, request_context)
        return resolved
