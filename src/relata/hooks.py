"""Hook contexts, onion composition, and the per-model hook merge."""

from __future__ import annotations

from collections.abc import Awaitable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Union

from loguru import logger

from relata.errors import RelataError


@dataclass
class CreateContext:
    """Per-request envelope passed through the create chain."""

    data: dict[str, Any]
    response: Any = None
    request_context: Any = None
    where: dict[str, Any] | None = None


@dataclass
class UpdateContext:
    """Per-request envelope passed through the update chain."""

    where: dict[str, Any]
    data: dict[str, Any]
    response: Any = None
    request_context: Any = None


@dataclass
class DeleteContext:
    """Per-request envelope passed through the delete chain."""

    where: dict[str, Any]
    data: dict[str, Any] = field(default_factory=dict)
    response: Any = None
    request_context: Any = None


Context = Union[CreateContext, UpdateContext, DeleteContext]
Proceed = Callable[[], Awaitable[Any]]
Wrapper = Callable[[Any, Proceed], Awaitable[Any]]
Terminal = Callable[[Any], Awaitable[Any]]
Chain = Callable[[Any, Terminal], Awaitable[Any]]
# resolver(record, args, request_context)
FieldResolver = Callable[[dict[str, Any], dict[str, Any], Any], Awaitable[Any]]

WRAP_METHODS = ("wrap_create", "wrap_update", "wrap_delete")


@dataclass(frozen=True)
class Hook:
    """One contribution for one model: optional wrappers and field resolvers."""

    wrap_create: Wrapper | None = None
    wrap_update: Wrapper | None = None
    wrap_delete: Wrapper | None = None
    resolve_fields: Mapping[str, FieldResolver] = field(default_factory=dict)


@dataclass(frozen=True)
class MergedHook:
    """Effective hook of a model after all contributions were merged."""

    wrap_create: Chain | None = None
    wrap_update: Chain | None = None
    wrap_delete: Chain | None = None
    resolve_fields: Mapping[str, FieldResolver] = field(
        default_factory=lambda: MappingProxyType({})
    )


def compose(wrappers: Sequence[Wrapper]) -> Chain:
    """Compose wrappers into one chain; the first wrapper is the outermost.

    The returned chain is called with the context and the terminal operation.
    Each wrapper receives a ``proceed`` callable running the next inner layer,
    and the innermost layer runs the terminal. A wrapper that never calls
    ``proceed`` skips every inner layer and the terminal.
    """
    layers = tuple(wrappers)

    async def chain(context: Any, terminal: Terminal) -> Any:
        last_called = -1

        async def dispatch(index: int) -> Any:
            nonlocal last_called
            if index <= last_called:
                raise RelataError("proceed() called multiple times")
            last_called = index
            if index == len(layers):
                return await terminal(context)
            return await layers[index](context, lambda: dispatch(index + 1))

        return await dispatch(0)

    return chain


def merge_hooks(contributions: Iterable[Mapping[str, Hook]]) -> Mapping[str, MergedHook]:
    """Merge hook contributions into one effective hook per model.

    Wrappers keep contribution order (first contributed is outermost).
    Field resolvers are merged with last writer winning per field name.
    """
    wrappers: dict[str, dict[str, list[Wrapper]]] = {}
    resolvers: dict[str, dict[str, FieldResolver]] = {}
    for hook_map in contributions:
        for model_name, hook in hook_map.items():
            per_model = wrappers.setdefault(model_name, {m: [] for m in WRAP_METHODS})
            for method in WRAP_METHODS:
                fn = getattr(hook, method)
                if fn is not None:
                    per_model[method].append(fn)
            resolvers.setdefault(model_name, {}).update(hook.resolve_fields)

    merged: dict[str, MergedHook] = {}
    for model_name, per_model in wrappers.items():
        logger.debug(
            f"Merged hooks for {model_name}: "
            + ", ".join(f"{m}={len(per_model[m])}" for m in WRAP_METHODS)
        )
        merged[model_name] = MergedHook(
            **{m: compose(per_model[m]) if per_model[m] else None for m in WRAP_METHODS},
            resolve_fields=MappingProxyType(dict(resolvers[model_name])),
        )
    return MappingProxyType(merged)
