"""Schema loader: import a Python module and compile the models it defines."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path
from types import ModuleType

import typer

from relata.cli import _exitcodes as ec
from relata.cli._output import print_error
from relata.errors import ConfigurationError
from relata.schema import Schema
from relata.storage import MemoryDataSourceGroup
from relata.types import Model


def _import(models: str | None, models_path: str | None) -> ModuleType:
    if models_path:
        path = Path(models_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Models path not found: {models_path}")
        # Add parent to sys.path so import works
        parent = str(path.parent)
        if parent not in sys.path:
            sys.path.insert(0, parent)
        return importlib.import_module(path.stem)
    if models:
        return importlib.import_module(models)
    raise ValueError("One of --models or --models-path is required")


def load_schema(models: str | None = None, models_path: str | None = None) -> Schema:
    """Load a compiled Schema from a Python module.

    A module-level ``schema`` attribute holding a Schema is used as is.
    Otherwise every module-level Model instance is compiled into a new Schema
    backed by in-memory data sources.

    Args:
        models: Dotted Python import path (e.g. 'myapp.models')
        models_path: Filesystem path to a Python file

    Returns:
        The compiled schema
    """
    module = _import(models, models_path)

    existing = getattr(module, "schema", None)
    if isinstance(existing, Schema):
        return existing

    found = [obj for obj in vars(module).values() if isinstance(obj, Model)]
    if not found:
        raise ValueError(f"No models found in {module.__name__}")
    return Schema(found, data_source=MemoryDataSourceGroup())


def load_schema_or_exit(models: str | None, models_path: str | None) -> Schema:
    """load_schema for commands: report failures on stderr and exit."""
    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        return load_schema(models, models_path)
    except ConfigurationError as e:
        print_error(f"Invalid schema: {e}")
        raise typer.Exit(ec.CONFIGURATION_ERROR)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)
