"""Storage abstraction and the in-memory reference backend."""

from __future__ import annotations

import asyncio
import copy
import uuid
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from loguru import logger

from relata.errors import StorageBackendError
from relata.filters import (
    ElementMatch,
    FieldFilter,
    FilterNode,
    FilterTree,
    Operator,
    Quantifier,
    RelationFilter,
)
from relata.mutation import ArrayOperator, Mutation

if TYPE_CHECKING:
    from relata.types import Model

Record = dict[str, Any]


@runtime_checkable
class MapReadable(Protocol):
    """Record-level reads."""

    async def find_one_by_id(self, record_id: Any, context: Any = None) -> Record | None: ...


@runtime_checkable
class ListReadable(Protocol):
    """Collection-level reads with filters."""

    async def find(self, where: FilterTree | None = None, context: Any = None) -> list[Record]: ...

    async def find_one(self, where: FilterTree, context: Any = None) -> Record | None: ...


@runtime_checkable
class ListMutable(Protocol):
    """Collection-level writes with filters."""

    async def create(self, mutation: Mutation, context: Any = None) -> Record: ...

    async def update(
        self, where: FilterTree, mutation: Mutation, context: Any = None
    ) -> Record | None: ...

    async def delete(self, where: FilterTree, context: Any = None) -> None: ...


@runtime_checkable
class MapMutable(Protocol):
    """Record-level array mutations used for embedded references."""

    async def add_reference(
        self, record_id: Any, field: str, ref_id: Any, context: Any = None
    ) -> None: ...

    async def remove_reference(
        self, record_id: Any, field: str, ref_id: Any, context: Any = None
    ) -> None: ...


@runtime_checkable
class DataSource(MapReadable, ListReadable, ListMutable, MapMutable, Protocol):
    """Full storage surface a model is bound to."""


# --- filter evaluation against plain records ---


def _values_at(record: Any, path: str) -> list[Any]:
    """Collect the values at a dotted path, fanning out over lists."""
    current: list[Any] = [record]
    for segment in path.split("."):
        nxt: list[Any] = []
        for value in current:
            if isinstance(value, list):
                nxt.extend(v.get(segment) for v in value if isinstance(v, dict))
            elif isinstance(value, dict):
                nxt.append(value.get(segment))
        current = nxt
    candidates: list[Any] = []
    for value in current:
        if isinstance(value, list):
            candidates.extend(value)
        elif value is not None:
            candidates.append(value)
    return candidates


def _raw_at(record: Any, path: str) -> Any:
    current = record
    for segment in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
    return current


def _compare(candidate: Any, operator: Operator, value: Any) -> bool:
    try:
        if operator is Operator.EQ:
            return bool(candidate == value)
        if operator is Operator.GT:
            return candidate > value
        if operator is Operator.GTE:
            return candidate >= value
        if operator is Operator.LT:
            return candidate < value
        if operator is Operator.LTE:
            return candidate <= value
        if operator is Operator.IN:
            return candidate in value
        if operator is Operator.CONTAINS:
            return isinstance(candidate, str) and value in candidate
        if operator is Operator.BETWEEN:
            return value["from"] <= candidate <= value["to"]
        if operator is Operator.OBJECT:
            return isinstance(candidate, dict) and all(
                candidate.get(k) == v for k, v in value.items()
            )
    except TypeError:
        return False
    raise ValueError(f"Unknown operator: {operator}")


def _match_field(node: FieldFilter, record: Any) -> bool:
    op = node.operator
    if op in (Operator.ALL, Operator.NOT_IN, Operator.SIZE, Operator.ELEMENT_MATCH):
        raw = _raw_at(record, node.field)
        items = raw if isinstance(raw, list) else []
        if op is Operator.ALL:
            return all(v in items for v in node.value)
        if op is Operator.NOT_IN:
            return not any(v in items for v in node.value)
        if op is Operator.SIZE:
            return isinstance(raw, list) and len(raw) == node.value
        return any(
            all(_compare(item, sub_op, sub_val) for sub_op, sub_val in node.value.items())
            for item in items
        )

    candidates = _values_at(record, node.field)
    if op is Operator.EQ and node.value is None:
        return not candidates
    if op is Operator.NEQ:
        return not any(_compare(c, Operator.EQ, node.value) for c in candidates)
    if op is Operator.NOT_CONTAINS:
        return not any(_compare(c, Operator.CONTAINS, node.value) for c in candidates)
    return any(_compare(c, op, node.value) for c in candidates)


class MemoryDataSourceGroup:
    """Group of in-memory collections keyed by model source key.

    Instances are callable with a Model so they can be handed to Schema as the
    data source factory.
    """

    def __init__(self, id_field: str = "id") -> None:
        self.id_field = id_field
        self._sources: dict[str, MemoryDataSource] = {}

    def __call__(self, model: Model) -> MemoryDataSource:
        return self.get_data_source(model.source_key)

    def register(self, source: MemoryDataSource) -> None:
        self._sources.setdefault(source.key, source)

    def get_data_source(self, key: str) -> MemoryDataSource:
        if key not in self._sources:
            MemoryDataSource(key, self)
        return self._sources[key]

    def collection(self, key: str) -> dict[Any, Record]:
        return self.get_data_source(key).records

    def matches(self, node: FilterNode | None, record: Record) -> bool:
        """Evaluate a compiled filter node against a stored record."""
        if node is None:
            return True
        if isinstance(node, FilterTree):
            results = (self.matches(child, record) for child in node.children)
            return any(results) if node.op == "OR" else all(results)
        if isinstance(node, FieldFilter):
            return _match_field(node, record)
        if isinstance(node, ElementMatch):
            items = _raw_at(record, node.field)
            if not isinstance(items, list):
                return False
            return any(
                isinstance(item, dict) and self.matches(node.filter, item) for item in items
            )
        if isinstance(node, RelationFilter):
            return self._match_relation(node, record)
        raise ValueError(f"Unknown filter node type: {type(node)}")

    def _related(self, node: RelationFilter, record: Record) -> list[Record]:
        cfg = node.relation
        targets = self.collection(node.target_key)
        if cfg.side == "source":
            value = record.get(cfg.foreign_key)
            ids = value if isinstance(value, list) else ([] if value is None else [value])
            return [targets[i] for i in ids if i in targets]
        record_id = record.get(self.id_field)
        related = []
        for target in targets.values():
            value = target.get(cfg.foreign_key)
            if value == record_id or (isinstance(value, list) and record_id in value):
                related.append(target)
        return related

    def _match_relation(self, node: RelationFilter, record: Record) -> bool:
        related = self._related(node, record)
        hits = (self.matches(node.filter, r) for r in related)
        if not node.relation.list:
            return bool(related) and self.matches(node.filter, related[0])
        quantifier = node.relation.quantifier or Quantifier.SOME
        if quantifier is Quantifier.NONE:
            return not any(hits)
        if quantifier is Quantifier.EVERY:
            return all(hits)
        return any(hits)


class MemoryDataSource:
    """Dict-backed collection implementing the full DataSource surface.

    Every call yields to the event loop once, so concurrent relation batches
    interleave the way they would against a remote store.
    """

    def __init__(self, key: str, group: MemoryDataSourceGroup | None = None) -> None:
        self.key = key
        self.group = group or MemoryDataSourceGroup()
        self.records: dict[Any, Record] = {}
        self.group.register(self)

    @property
    def id_field(self) -> str:
        return self.group.id_field

    def _select(self, where: FilterTree | None) -> list[Record]:
        return [r for r in self.records.values() if self.group.matches(where, r)]

    def _get(self, record_id: Any, operation: str) -> Record:
        record = self.records.get(record_id)
        if record is None:
            raise StorageBackendError(operation, f"{self.key} has no record {record_id!r}")
        return record

    @staticmethod
    def _apply(record: Record, mutation: Mutation) -> None:
        record.update(copy.deepcopy(mutation.data))
        for op in mutation.array_operations:
            values = copy.deepcopy(op.value)
            if op.operator is ArrayOperator.SET:
                record[op.field] = values
            elif op.operator is ArrayOperator.ADD:
                record[op.field] = list(record.get(op.field) or []) + values
            else:
                record[op.field] = [v for v in record.get(op.field) or [] if v not in values]

    async def find_one_by_id(self, record_id: Any, context: Any = None) -> Record | None:
        await asyncio.sleep(0)
        record = self.records.get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def find(self, where: FilterTree | None = None, context: Any = None) -> list[Record]:
        await asyncio.sleep(0)
        return copy.deepcopy(self._select(where))

    async def find_one(self, where: FilterTree, context: Any = None) -> Record | None:
        await asyncio.sleep(0)
        found = self._select(where)
        return copy.deepcopy(found[0]) if found else None

    async def create(self, mutation: Mutation, context: Any = None) -> Record:
        await asyncio.sleep(0)
        record: Record = {}
        self._apply(record, mutation)
        record_id = record.get(self.id_field) or uuid.uuid4().hex
        if record_id in self.records:
            raise StorageBackendError("create", f"{self.key} already has record {record_id!r}")
        record[self.id_field] = record_id
        self.records[record_id] = record
        logger.debug(f"[{self.key}] created {record_id}")
        return copy.deepcopy(record)

    async def update(
        self, where: FilterTree, mutation: Mutation, context: Any = None
    ) -> Record | None:
        await asyncio.sleep(0)
        found = self._select(where)
        if not found:
            return None
        record = found[0]
        self._apply(record, mutation)
        logger.debug(f"[{self.key}] updated {record[self.id_field]}")
        return copy.deepcopy(record)

    async def delete(self, where: FilterTree, context: Any = None) -> None:
        await asyncio.sleep(0)
        for record in self._select(where):
            del self.records[record[self.id_field]]
            logger.debug(f"[{self.key}] deleted {record[self.id_field]}")

    async def add_reference(
        self, record_id: Any, field: str, ref_id: Any, context: Any = None
    ) -> None:
        await asyncio.sleep(0)
        record = self._get(record_id, "add_reference")
        record[field] = list(record.get(field) or []) + [ref_id]

    async def remove_reference(
        self, record_id: Any, field: str, ref_id: Any, context: Any = None
    ) -> None:
        await asyncio.sleep(0)
        record = self._get(record_id, "remove_reference")
        refs = list(record.get(field) or [])
        # one link per call, add_reference does not deduplicate
        if ref_id in refs:
            refs.remove(ref_id)
        record[field] = refs
