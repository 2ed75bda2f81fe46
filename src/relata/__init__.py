"""Relata: declarative models compiled to a CRUD-with-relations API over pluggable storage."""

__version__ = "0.1.0"

from relata.api import ModelApi
from relata.config import RelataConfig
from relata.errors import (
    ConfigurationError,
    NotFoundError,
    RelataError,
    RelationBatchError,
    StorageBackendError,
    ValidationError,
)
from relata.filters import FilterTree, compile_unique_where, compile_where
from relata.hooks import CreateContext, DeleteContext, Hook, UpdateContext, compose, merge_hooks
from relata.log import configure_logging
from relata.mutation import MutationFactory
from relata.printer import export_schema, format_schema
from relata.schema import Schema
from relata.storage import DataSource, MemoryDataSource, MemoryDataSourceGroup
from relata.types import (
    EnumField,
    Field,
    Model,
    ObjectField,
    RelationField,
    RelationType,
    ScalarField,
)

__all__ = [
    "__version__",
    "Model",
    "Field",
    "ScalarField",
    "EnumField",
    "ObjectField",
    "RelationField",
    "RelationType",
    "Schema",
    "ModelApi",
    "Hook",
    "CreateContext",
    "UpdateContext",
    "DeleteContext",
    "compose",
    "merge_hooks",
    "FilterTree",
    "compile_where",
    "compile_unique_where",
    "MutationFactory",
    "DataSource",
    "MemoryDataSource",
    "MemoryDataSourceGroup",
    "format_schema",
    "export_schema",
    "configure_logging",
    "RelataConfig",
    "RelataError",
    "ValidationError",
    "NotFoundError",
    "ConfigurationError",
    "StorageBackendError",
    "RelationBatchError",
]
