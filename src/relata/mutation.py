"""Translate raw create/update payloads into storage mutations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ArrayOperator(str, Enum):
    SET = "set"
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class ArrayOperation:
    """Native array update applied by the storage layer to one field."""

    field: str
    operator: ArrayOperator
    value: list[Any]


@dataclass
class Mutation:
    """Storage-layer mutation: plain field values plus array operations."""

    data: dict[str, Any] = field(default_factory=dict)
    array_operations: list[ArrayOperation] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.data and not self.array_operations


_ARRAY_ORDER = (ArrayOperator.SET, ArrayOperator.ADD, ArrayOperator.REMOVE)


class MutationFactory:
    """Per-model, per-operation payload translator.

    Fields marked as arrays accept ``{set|add|remove: [...]}`` objects, which
    become ArrayOperations instead of overwriting the stored list.
    """

    def __init__(self) -> None:
        self._array_fields: set[str] = set()

    def mark_array_field(self, name: str) -> None:
        self._array_fields.add(name)

    def is_array_field(self, name: str) -> bool:
        return name in self._array_fields

    @property
    def array_fields(self) -> frozenset[str]:
        return frozenset(self._array_fields)

    def create_mutation(self, payload: dict[str, Any]) -> Mutation:
        mutation = Mutation()
        for name, value in payload.items():
            if name not in self._array_fields or value is None:
                mutation.data[name] = value
                continue
            if isinstance(value, list):
                mutation.array_operations.append(
                    ArrayOperation(name, ArrayOperator.SET, list(value))
                )
                continue
            if isinstance(value, dict):
                for op in _ARRAY_ORDER:
                    if op.value in value:
                        mutation.array_operations.append(
                            ArrayOperation(name, op, list(value[op.value] or []))
                        )
                continue
            mutation.data[name] = value
        return mutation
